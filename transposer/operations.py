import logging
from abc import ABC, abstractmethod
from typing import Iterable, Optional

from transposer.scene import SceneNode, SpawnRequest, TileLayerNode


logger = logging.getLogger(__name__)

DEFAULT_PREFIX = "scene:"


class ImportOperation(ABC):
    """Hook run for the map root and every imported layer and object, with its custom properties."""

    @abstractmethod
    def handle_custom_properties(self, node: SceneNode, properties: dict[str, str]) -> None:
        pass


class SetLayerOperation(ImportOperation):
    def __init__(self, prefix: str = DEFAULT_PREFIX, known_layers: Optional[Iterable[str]] = None) -> None:
        self.key = f"{prefix}layer"
        self.known_layers = set(known_layers) if known_layers is not None else None

    def handle_custom_properties(self, node: SceneNode, properties: dict[str, str]) -> None:
        if self.key not in properties:
            return

        layer_name = properties[self.key]
        if self.known_layers is not None and layer_name not in self.known_layers:
            logger.error(f"The map is expecting a layer called {layer_name} to exist, but it is not configured")
            return
        node.layer = layer_name


class SetTagOperation(ImportOperation):
    def __init__(self, prefix: str = DEFAULT_PREFIX) -> None:
        self.key = f"{prefix}tag"

    def handle_custom_properties(self, node: SceneNode, properties: dict[str, str]) -> None:
        if self.key in properties:
            node.tag = properties[self.key]


class SpawnPrefabOperation(ImportOperation):
    """Records prefab spawn requests on every placed tile of a tile layer, or on objects.

    With the replace variant the tiles are removed and the objects marked as replaced.
    """

    def __init__(self, prefix: str = DEFAULT_PREFIX) -> None:
        self.key = f"{prefix}prefab"
        self.replace_key = f"{prefix}prefabReplace"

    def handle_custom_properties(self, node: SceneNode, properties: dict[str, str]) -> None:
        if self.replace_key in properties:
            prefab = properties[self.replace_key]
            replace = True
        elif self.key in properties:
            prefab = properties[self.key]
            replace = False
        else:
            return

        if isinstance(node, TileLayerNode):
            for placement in node.tiles:
                node.spawns.append(SpawnRequest(prefab, node.position, placement.cell, replace))
            if replace:
                node.tiles = []
        elif node.children:
            for child in node.children:
                self._spawn_on(child, prefab, replace)
        else:
            self._spawn_on(node, prefab, replace)

    @staticmethod
    def _spawn_on(node: SceneNode, prefab: str, replace: bool) -> None:
        node.spawns.append(SpawnRequest(prefab, node.position, None, replace))
        if replace:
            node.replaced = True


def builtin_operations(prefix: str = DEFAULT_PREFIX) -> list[ImportOperation]:
    return [SetLayerOperation(prefix), SetTagOperation(prefix), SpawnPrefabOperation(prefix)]
