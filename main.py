import argparse
import logging
import sys

from transposer.importer import ImportSettings, import_map
from transposer.operations import builtin_operations
from transposer.scene import ImageLayerNode, MapScene, ObjectLayerNode, SceneNode, TileLayerNode
from transposer.tileset import ColliderImport


def describe(node: SceneNode, indent: int = 0) -> None:
    prefix = "  " * indent
    details = ""
    if isinstance(node, TileLayerNode):
        details = f" tiles={len(node.tiles)} colliders={node.has_colliders}"
    elif isinstance(node, ObjectLayerNode):
        details = f" objects={len(node.objects)}"
    elif isinstance(node, ImageLayerNode):
        details = f" image={node.image_path}"
    if not node.visible:
        details += " hidden"
    if not node.active:
        details += " inactive"

    print(f"{prefix}{type(node).__name__} {node.name!r} at ({node.position.x:.3f}, {node.position.y:.3f}){details}")
    if not isinstance(node, ObjectLayerNode):
        for child in node.children:
            describe(child, indent + 1)


def main() -> None:
    ap = argparse.ArgumentParser(description="Import a Tiled map and print the resulting scene")
    ap.add_argument("map", help="Map file (.tmx)")
    ap.add_argument(
        "--colliders",
        choices=[c.value for c in ColliderImport],
        default=ColliderImport.SPRITE.value,
        help="How tiles with collision shapes get their colliders")
    ap.add_argument("--hidden-inactive", action="store_true", help="Deactivate hidden layers instead of hiding them")
    ap.add_argument("--prefix", default="scene:", help="Prefix of custom properties handled by the import operations")
    ap.add_argument("-v", "--verbose", action="store_true", help="Log debug output")
    args = ap.parse_args()

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO, format="%(levelname)s %(name)s: %(message)s")

    settings = ImportSettings(
        collider_import=ColliderImport(args.colliders),
        hidden_layers_inactive=args.hidden_inactive,
        operations=builtin_operations(args.prefix))
    result = import_map(args.map, settings)

    if not result.success:
        for diagnostic in result.diagnostics.errors:
            print(f"Error: {diagnostic}", file=sys.stderr)
        sys.exit(1)

    scene: MapScene = result.scene
    print(f"{scene.name}: {scene.grid} ppu={scene.grid.pixels_per_unit} sort={scene.grid.sort_order.value}")
    for tileset in scene.tilesets:
        print(f"  tileset {tileset.name!r} firstgid={tileset.firstgid} tiles={len(tileset.tiles)}{' FAILED' if tileset.is_failed else ''}")
    for child in scene.children:
        describe(child, 1)
    print(f"{len(scene.tile_layers())} tile layer(s), {len(scene.object_nodes())} object(s)")
    print(f"{len(result.diagnostics.errors)} error(s), {len(result.diagnostics.warnings)} warning(s)")


if __name__ == "__main__":
    main()
