from unittest import TestCase

import numpy as np
from pygame import Rect
from pygame.math import Vector2

from transposer.gid import (
    GID_TRANS_FLIP_HORIZONTALLY, GID_TRANS_FLIP_VERTICALLY, GID_TRANS_ROTATE, IDENTITY, GidResolver, GidStatus, TileFlags,
    anchor_matrix, decompose, flag_matrix, split_gid
)
from transposer.tileset import ImportedTile, ImportedTileset
from transposer.tmx import TilesetReference, parse_tileset


H = GID_TRANS_FLIP_HORIZONTALLY
V = GID_TRANS_FLIP_VERTICALLY
D = GID_TRANS_ROTATE


def image_tileset(firstgid: int, count: int, name: str, tilewidth: int = 32, tileheight: int = 32) -> ImportedTileset:
    tileset = parse_tileset(
        f'<tileset name="{name}" tilewidth="{tilewidth}" tileheight="{tileheight}" tilecount="{count}" columns="1">'
        f'<image source="{name}.png" width="{tilewidth}" height="{tileheight * count}"/></tileset>')
    tiles = [ImportedTile(i, i, Rect(0, i * tileheight, tilewidth, tileheight), Vector2(0.5, 0.5), f"{name}.png") for i in range(count)]
    return ImportedTileset(firstgid, tileset, tiles)


def collection_tileset(firstgid: int) -> ImportedTileset:
    tileset = parse_tileset("""
        <tileset name="props" tilewidth="64" tileheight="64" columns="0">
          <tile id="0"><image source="barrel.png" width="32" height="48"/></tile>
          <tile id="3"><image source="tree.png" width="64" height="96"/></tile>
        </tileset>
    """)
    tiles = [
        ImportedTile(0, 0, Rect(0, 0, 32, 48), Vector2(0.5, 0.5), "barrel.png"),
        ImportedTile(1, 3, Rect(0, 0, 64, 96), Vector2(0.5, 0.5), "tree.png"),
    ]
    return ImportedTileset(firstgid, tileset, tiles)


class TestSplitGid(TestCase):
    def test_flags_are_stripped(self) -> None:
        self.assertEqual((5, TileFlags(False, False, False)), split_gid(5))
        self.assertEqual((5, TileFlags(True, False, False)), split_gid(5 | H))
        self.assertEqual((5, TileFlags(False, True, False)), split_gid(5 | V))
        self.assertEqual((5, TileFlags(False, False, True)), split_gid(5 | D))
        self.assertEqual((0x1FFFFFFF, TileFlags(True, True, True)), split_gid(0xFFFFFFFF))

    def test_flags_round_trip_into_gid(self) -> None:
        gid, flags = split_gid(17 | D | V)

        self.assertEqual(17 | D | V, flags.to_gid(gid))
        self.assertTrue(flags.any())
        self.assertFalse(split_gid(17)[1].any())


class TestFlagMatrix(TestCase):
    def test_every_flag_combination(self) -> None:
        expected = {
            TileFlags(False, False, False): [[1, 0], [0, 1]],
            TileFlags(False, False, True): [[0, -1], [-1, 0]],
            TileFlags(True, False, False): [[-1, 0], [0, 1]],
            TileFlags(False, True, False): [[1, 0], [0, -1]],
            TileFlags(True, True, False): [[-1, 0], [0, -1]],
            TileFlags(True, False, True): [[0, 1], [-1, 0]],
            TileFlags(False, True, True): [[0, -1], [1, 0]],
            TileFlags(True, True, True): [[0, 1], [1, 0]],
        }

        for flags, linear in expected.items():
            with self.subTest(flags=flags):
                matrix = flag_matrix(flags)
                np.testing.assert_allclose(np.array(linear, dtype=float), matrix[0:2, 0:2], atol=1e-9)
                np.testing.assert_allclose([0.0, 0.0, 1.0], matrix[2], atol=1e-9)
                np.testing.assert_allclose([0.0, 0.0], matrix[0:2, 2], atol=1e-9)


class TestAnchorMatrix(TestCase):
    def test_square_tiles_need_no_translation(self) -> None:
        for flags in (TileFlags(True, False, False), TileFlags(False, True, True), TileFlags(True, True, True)):
            with self.subTest(flags=flags):
                matrix = anchor_matrix(flag_matrix(flags), 32, 32, 32, 32)
                np.testing.assert_allclose([0.0, 0.0], matrix[0:2, 2], atol=1e-9)

    def test_tall_tile_flipped_vertically_moves_up_one_cell(self) -> None:
        matrix = anchor_matrix(flag_matrix(TileFlags(False, True, False)), 32, 64, 32, 32)

        np.testing.assert_allclose([0.0, 1.0], matrix[0:2, 2], atol=1e-9)
        np.testing.assert_allclose([[1, 0], [0, -1]], matrix[0:2, 0:2], atol=1e-9)

    def test_wide_tile_flipped_horizontally_moves_right_one_cell(self) -> None:
        matrix = anchor_matrix(flag_matrix(TileFlags(True, False, False)), 64, 32, 32, 32)

        np.testing.assert_allclose([1.0, 0.0], matrix[0:2, 2], atol=1e-9)


class TestDecompose(TestCase):
    def test_identity(self) -> None:
        translation, rotation, scale = decompose(IDENTITY)

        self.assertEqual(Vector2(0, 0), translation)
        self.assertAlmostEqual(0.0, rotation)
        self.assertEqual(Vector2(1, 1), scale)

    def test_diagonal_flip_is_mirrored_rotation(self) -> None:
        translation, rotation, scale = decompose(flag_matrix(TileFlags(False, False, True)))

        self.assertAlmostEqual(90.0, rotation)
        self.assertAlmostEqual(-1.0, scale.x)
        self.assertAlmostEqual(1.0, scale.y)

    def test_horizontal_flip(self) -> None:
        _, rotation, scale = decompose(flag_matrix(TileFlags(True, False, False)))

        self.assertAlmostEqual(0.0, rotation)
        self.assertAlmostEqual(-1.0, scale.x)
        self.assertAlmostEqual(1.0, scale.y)

    def test_translation_is_kept(self) -> None:
        translation, _, _ = decompose(anchor_matrix(flag_matrix(TileFlags(False, True, False)), 32, 64, 32, 32))

        self.assertAlmostEqual(0.0, translation.x)
        self.assertAlmostEqual(1.0, translation.y)


class TestGidResolver(TestCase):
    def setUp(self) -> None:
        self.first = image_tileset(1, 49, "first")
        self.second = image_tileset(50, 70, "second")
        self.third = image_tileset(120, 10, "third")
        self.resolver = GidResolver([self.third, self.first, self.second], 32, 32)

    def test_boundaries_between_tilesets(self) -> None:
        last_of_first = self.resolver.resolve(49)
        self.assertEqual(GidStatus.RESOLVED, last_of_first.status)
        self.assertIs(self.first, last_of_first.tileset)
        self.assertEqual(48, last_of_first.local_id)
        self.assertIs(self.first.tiles[48], last_of_first.tile)

        first_of_second = self.resolver.resolve(50)
        self.assertIs(self.second, first_of_second.tileset)
        self.assertEqual(0, first_of_second.local_id)

        first_of_third = self.resolver.resolve(120)
        self.assertIs(self.third, first_of_third.tileset)
        self.assertEqual(0, first_of_third.local_id)

    def test_empty_cell(self) -> None:
        resolution = self.resolver.resolve(0)

        self.assertEqual(GidStatus.EMPTY, resolution.status)
        self.assertFalse(resolution.resolved)
        self.assertIsNone(resolution.tileset)

    def test_flags_do_not_change_the_tile(self) -> None:
        plain = self.resolver.resolve(5)
        flipped = self.resolver.resolve(5 | D | H)

        self.assertIs(plain.tile, flipped.tile)
        self.assertEqual(5, flipped.gid)
        self.assertEqual(TileFlags(True, False, True), flipped.flags)
        np.testing.assert_allclose(IDENTITY, plain.matrix)
        np.testing.assert_allclose([[0, 1, 0], [-1, 0, 0], [0, 0, 1]], flipped.matrix, atol=1e-9)

    def test_gid_past_the_last_tile(self) -> None:
        resolution = self.resolver.resolve(130)

        self.assertEqual(GidStatus.UNRESOLVED, resolution.status)
        self.assertIs(self.third, resolution.tileset)
        self.assertEqual(10, resolution.local_id)
        self.assertIsNone(resolution.tile)

    def test_gid_below_the_first_tileset(self) -> None:
        resolver = GidResolver([image_tileset(10, 4, "late")], 32, 32)

        resolution = resolver.resolve(3)

        self.assertEqual(GidStatus.UNRESOLVED, resolution.status)
        self.assertIsNone(resolution.tileset)

    def test_collection_tileset_matches_tile_ids(self) -> None:
        props = collection_tileset(1)
        resolver = GidResolver([props], 32, 32)

        self.assertEqual("tree.png", resolver.resolve(4).tile.image_path)
        self.assertEqual("barrel.png", resolver.resolve(1).tile.image_path)
        self.assertEqual(GidStatus.UNRESOLVED, resolver.resolve(2).status)
        self.assertEqual(4, props.tile_count)

    def test_failed_tileset_keeps_its_range(self) -> None:
        reference = TilesetReference()
        reference.firstgid = 50
        reference.source = "missing.tsx"
        resolver = GidResolver([self.first, ImportedTileset.failed(reference)], 32, 32)

        resolution = resolver.resolve(51)

        self.assertEqual(GidStatus.UNRESOLVED, resolution.status)
        self.assertTrue(resolution.tileset.is_failed)
        self.assertEqual("missing.tsx", resolution.tileset.name)
        self.assertIs(self.first, resolver.resolve(49).tileset)

    def test_overlapping_tilesets_are_reported(self) -> None:
        with self.assertLogs("transposer.gid", "WARNING"):
            GidResolver([image_tileset(1, 10, "a"), image_tileset(5, 10, "b")], 32, 32)
