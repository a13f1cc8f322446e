import binascii
import gzip
import logging
import struct
import zlib
from base64 import b64decode
from typing import Callable, NamedTuple, Optional, Sequence

from transposer.errors import PayloadError, PayloadLengthMismatch
from transposer.tmx import TiledChunk, TiledTileLayer


logger = logging.getLogger(__name__)

MAX_GID = 0xFFFFFFFF


class DecodedChunk(NamedTuple):
    """Raw GIDs of one chunk (or of a whole finite layer), row-major, row 0 first."""
    x: int
    y: int
    width: int
    height: int
    gids: list[int]


def _decode_plain(tiles: Sequence[int], expected: int) -> list[int]:
    if len(tiles) != expected:
        raise PayloadLengthMismatch(expected, len(tiles))
    for gid in tiles:
        if not 0 <= gid <= MAX_GID:
            raise PayloadError(f"GID {gid} is not an unsigned 32 bit value")
    return list(tiles)


def _decode_csv(text: Optional[str], expected: int) -> list[int]:
    tokens = [token.strip() for token in (text or "").split(",")]
    tokens = [token for token in tokens if token]
    if len(tokens) != expected:
        raise PayloadLengthMismatch(expected, len(tokens))

    gids = []
    for token in tokens:
        try:
            gid = int(token)
        except ValueError:
            raise PayloadError(f"Could not parse GID {token}")
        if not 0 <= gid <= MAX_GID:
            raise PayloadError(f"GID {token} is not an unsigned 32 bit value")
        gids.append(gid)
    return gids


def _decompress(data: bytes, compression: Optional[str]) -> bytes:
    try:
        if compression is None:
            return data
        if compression == "zlib":
            # skip the 2 byte zlib header and inflate the raw deflate stream behind it
            return zlib.decompressobj(-zlib.MAX_WBITS).decompress(data[2:])
        if compression == "gzip":
            return gzip.decompress(data)
    except (zlib.error, OSError, EOFError) as e:
        raise PayloadError(f"Could not decompress {compression} payload: {e}")
    raise PayloadError(f"Unknown compression {compression}")


def _decode_base64(text: Optional[str], compression: Optional[str], expected: int) -> list[int]:
    try:
        data = b64decode((text or "").strip(), validate=False)
    except binascii.Error as e:
        raise PayloadError(f"Could not decode base64 payload: {e}")

    data = _decompress(data, compression)
    if len(data) != expected * 4:
        raise PayloadLengthMismatch(expected * 4, len(data), "bytes")
    return list(struct.unpack(f"<{expected}L", data))


def decode_gids(
        encoding: Optional[str],
        compression: Optional[str],
        text: Optional[str],
        tiles: Sequence[int],
        width: int,
        height: int) -> list[int]:
    """Decodes one layer or chunk payload into exactly width * height raw GIDs.

    Raises:
        PayloadLengthMismatch: when the decoded tile (or byte) count does not match width * height.
        PayloadError: on unknown encoding/compression or undecodable content.

    """
    expected = width * height
    if compression == "":
        compression = None

    if encoding is None or encoding == "" or encoding == "none":
        if compression is not None:
            logger.debug(f"Ignoring compression {compression} for plain tile data")
        return _decode_plain(tiles, expected)
    if encoding == "csv":
        return _decode_csv(text, expected)
    if encoding == "base64":
        return _decode_base64(text, compression, expected)

    raise PayloadError(f"Unknown encoding for data {encoding}")


def decode_chunk(encoding: Optional[str], compression: Optional[str], chunk: TiledChunk) -> DecodedChunk:
    gids = decode_gids(encoding, compression, chunk.text, chunk.tiles, chunk.width, chunk.height)
    return DecodedChunk(chunk.x, chunk.y, chunk.width, chunk.height, gids)


def decode_layer(layer: TiledTileLayer, on_chunk_error: Optional[Callable[[TiledChunk, PayloadError], None]] = None) -> list[DecodedChunk]:
    """Decodes a finite layer into one chunk at the origin, or an infinite layer chunk by chunk.

    With on_chunk_error a failing chunk is reported to it and skipped so sibling chunks survive,
    without it the first failing chunk aborts the call. A failing finite layer always raises.
    """
    data = layer.data
    if data is None:
        return []
    if data.chunks:
        chunks = []
        for chunk in data.chunks:
            try:
                chunks.append(decode_chunk(data.encoding, data.compression, chunk))
            except PayloadError as e:
                if on_chunk_error is None:
                    raise
                on_chunk_error(chunk, e)
        return chunks

    gids = decode_gids(data.encoding, data.compression, data.text, data.tiles, layer.width, layer.height)
    return [DecodedChunk(0, 0, layer.width, layer.height, gids)]
