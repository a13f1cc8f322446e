from typing import Optional


class TransposerError(Exception):
    def __init__(self, message: str, path: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.path = path

    def __str__(self) -> str:
        if self.path is not None:
            return f"{self.path}: {self.message}"
        return self.message


class DocumentError(TransposerError):
    pass


class UnsupportedOrientation(DocumentError):
    def __init__(self, orientation: Optional[str], path: Optional[str] = None) -> None:
        super().__init__(f"The map has an orientation of {orientation}, which is not supported", path)
        self.orientation = orientation


class PayloadError(TransposerError):
    pass


class PayloadLengthMismatch(PayloadError):
    def __init__(self, expected: int, actual: int, unit: str = "tiles") -> None:
        super().__init__(f"Decoded payload has {actual} {unit} but {expected} were expected")
        self.expected = expected
        self.actual = actual


class TilesetImportFailure(TransposerError):
    pass


class TemplateLoadFailure(TransposerError):
    pass
