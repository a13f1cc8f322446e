import logging
import os
from abc import ABC, abstractmethod
from typing import Any, NamedTuple, Optional

import pygame
from pygame import Rect, Surface
from pygame.math import Vector2

from transposer.errors import DocumentError, TilesetImportFailure
from transposer.utils import Size


logger = logging.getLogger(__name__)


class TextSource(ABC):
    @abstractmethod
    def read_text(self, path: str) -> Optional[str]:
        """Returns the document at path or None when it does not exist.

        Raises:
            DocumentError: when the file exists but can't be read or decoded.

        """


class FileTextSource(TextSource):
    def __init__(self, encoding: str = "utf-8") -> None:
        self.encoding = encoding

    def read_text(self, path: str) -> Optional[str]:
        if not os.path.isfile(path):
            return None
        try:
            with open(path, "r", encoding=self.encoding) as f:
                return f.read()
        except (UnicodeDecodeError, OSError) as e:
            raise DocumentError(f"Cannot read document: {e}", path)


class SpriteSlice(NamedTuple):
    image: Any
    rect: Rect
    pivot: Vector2


class ImageSource(ABC):
    """Host side of tileset importing: measures images and registers sub-images."""

    @abstractmethod
    def image_size(self, path: str) -> Optional[Size]:
        """Pixel size of the image at path or None when it can't be found."""

    @abstractmethod
    def slice(self, path: str, rect: Rect, pivot: Vector2) -> SpriteSlice:
        """Registers the sub-image of path at rect with a normalised pivot."""


class PygameImageSource(ImageSource):
    def __init__(self) -> None:
        self.surfaces: dict[str, Surface] = {}

    def _load(self, path: str) -> Optional[Surface]:
        if path in self.surfaces:
            return self.surfaces[path]
        if not os.path.isfile(path):
            return None

        try:
            surface = pygame.image.load(path)
        except pygame.error as e:
            raise TilesetImportFailure(f"Cannot load image: {e}", path)

        logger.debug(f"Loaded image {path} of {surface.get_width()}x{surface.get_height()}")
        self.surfaces[path] = surface
        return surface

    def image_size(self, path: str) -> Optional[Size]:
        surface = self._load(path)
        if surface is None:
            return None
        return Size(surface.get_width(), surface.get_height())

    def slice(self, path: str, rect: Rect, pivot: Vector2) -> SpriteSlice:
        surface = self._load(path)
        if surface is None:
            raise TilesetImportFailure("Image not found", path)
        try:
            return SpriteSlice(surface.subsurface(rect), Rect(rect), Vector2(pivot))
        except ValueError as e:
            raise TilesetImportFailure(f"Cannot slice {rect} out of image: {e}", path)
