import logging
import os
from typing import TYPE_CHECKING, Optional

from transposer.diagnostics import DiagnosticKind
from transposer.errors import DocumentError, TemplateLoadFailure, TilesetImportFailure
from transposer.tileset import ImportedTileset, import_tileset
from transposer.tmx import Properties, TiledObject, TiledTemplate, parse_template

if TYPE_CHECKING:
    from transposer.importer import ImportSession


logger = logging.getLogger(__name__)

# Fields an instance object may override
MERGED_FIELDS = ("id", "name", "type", "x", "y", "width", "height", "rotation", "gid", "visible", "shape")


def merge_objects(template_object: TiledObject, instance_object: TiledObject) -> TiledObject:
    """Returns a new object: the template's fields overridden by every field the instance sets.

    The instance's own template reference is kept but never followed again.
    """
    merged = template_object.copy()
    for field in MERGED_FIELDS:
        value = getattr(instance_object, field)
        if value is not None:
            setattr(merged, field, value)

    merged.properties = Properties.merge(template_object.properties, instance_object.properties)
    merged.template = instance_object.template
    return merged


class ImportedTemplate:
    def __init__(self, template: TiledTemplate, tileset: Optional[ImportedTileset], path: str) -> None:
        self.template = template
        self.tileset = tileset
        self.path = path

    @property
    def object(self) -> TiledObject:
        return self.template.object

    def __repr__(self) -> str:
        return f"ImportedTemplate(path={self.path!r}, tileset={self.tileset!r})"


class TemplateCache:
    """Templates of one import run, parsed and tileset-imported once per absolute path."""

    def __init__(self) -> None:
        self.templates: dict[str, ImportedTemplate] = {}
        self.failures: dict[str, TemplateLoadFailure] = {}

    def __len__(self) -> int:
        return len(self.templates)

    def __contains__(self, path: str) -> bool:
        return os.path.abspath(path) in self.templates

    def get(self, path: str, session: 'ImportSession') -> ImportedTemplate:
        path = os.path.abspath(path)
        if path in self.templates:
            return self.templates[path]
        if path in self.failures:
            raise self.failures[path]

        try:
            imported = self._load(path, session)
        except TemplateLoadFailure as e:
            self.failures[path] = e
            raise

        self.templates[path] = imported
        return imported

    @staticmethod
    def _load(path: str, session: 'ImportSession') -> ImportedTemplate:
        logger.info(f"Loading template {path}")
        try:
            text = session.text_source.read_text(path)
            if text is None:
                raise TemplateLoadFailure("Template file not found", path)
            template = parse_template(text, path)
        except DocumentError as e:
            raise TemplateLoadFailure(e.message, path) from e

        tileset = None
        if template.tileset is not None:
            try:
                tileset = import_tileset(template.tileset, os.path.dirname(path), session)
            except TilesetImportFailure as e:
                # geometry and properties still apply, tile identity stays unresolved
                session.diagnostics.error(DiagnosticKind.TILESET_IMPORT_FAILURE, e.message, path=e.path or path)
                tileset = ImportedTileset.failed(template.tileset)

        return ImportedTemplate(template, tileset, path)
