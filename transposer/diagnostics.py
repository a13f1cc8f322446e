import enum
import logging
from typing import Iterator, NamedTuple, Optional

logger = logging.getLogger(__name__)


class Severity(enum.Enum):
    INFO = logging.INFO
    WARNING = logging.WARNING
    ERROR = logging.ERROR


class DiagnosticKind(enum.Enum):
    DOCUMENT_ERROR = enum.auto()
    UNSUPPORTED_ORIENTATION = enum.auto()
    PAYLOAD_ERROR = enum.auto()
    PAYLOAD_LENGTH_MISMATCH = enum.auto()
    UNRESOLVED_GID = enum.auto()
    TILESET_IMPORT_FAILURE = enum.auto()
    TILESET_MISMATCH = enum.auto()
    TEMPLATE_LOAD_FAILURE = enum.auto()
    EMPTY_INFINITE_LAYER = enum.auto()


class Diagnostic(NamedTuple):
    severity: Severity
    kind: DiagnosticKind
    message: str
    layer: Optional[str] = None
    chunk: Optional[tuple[int, int]] = None
    gid: Optional[int] = None
    path: Optional[str] = None

    def __str__(self) -> str:
        context = []
        if self.path is not None:
            context.append(f"file={self.path}")
        if self.layer is not None:
            context.append(f"layer={self.layer}")
        if self.chunk is not None:
            context.append(f"chunk={self.chunk[0]},{self.chunk[1]}")
        if self.gid is not None:
            context.append(f"gid={self.gid}")
        suffix = f" [{' '.join(context)}]" if context else ""
        return f"{self.kind.name}: {self.message}{suffix}"


class Diagnostics:
    """Diagnostics accumulated over a single import run.

    Every recorded event is logged as well, so hosts that only configure logging see it too.
    """

    def __init__(self, log: Optional[logging.Logger] = None) -> None:
        self.log = log if log is not None else logger
        self.events: list[Diagnostic] = []

    def __iter__(self) -> Iterator[Diagnostic]:
        return iter(self.events)

    def __len__(self) -> int:
        return len(self.events)

    def record(self, severity: Severity, kind: DiagnosticKind, message: str, **context) -> Diagnostic:
        diagnostic = Diagnostic(severity, kind, message, **context)
        self.events.append(diagnostic)
        self.log.log(severity.value, str(diagnostic))
        return diagnostic

    def warning(self, kind: DiagnosticKind, message: str, **context) -> Diagnostic:
        return self.record(Severity.WARNING, kind, message, **context)

    def error(self, kind: DiagnosticKind, message: str, **context) -> Diagnostic:
        return self.record(Severity.ERROR, kind, message, **context)

    def of_kind(self, kind: DiagnosticKind) -> list[Diagnostic]:
        return [d for d in self.events if d.kind == kind]

    @property
    def errors(self) -> list[Diagnostic]:
        return [d for d in self.events if d.severity == Severity.ERROR]

    @property
    def warnings(self) -> list[Diagnostic]:
        return [d for d in self.events if d.severity == Severity.WARNING]
