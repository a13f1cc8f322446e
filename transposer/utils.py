import os
from collections import namedtuple
from typing import Optional

from pygame import Color
from pygame.math import Vector2


Size = namedtuple("Size", ["width", "height"])


def convert_to_bool(value: str) -> bool:
    value = str(value).strip()
    if value:
        value = value.lower()[0]
        if value in ("1", "y", "t"):
            return True
        if value in ("-", "0", "n", "f"):
            return False
    else:
        return False
    raise ValueError(f"cannot parse {value} as bool")


def parse_color(value: Optional[str]) -> Optional[Color]:
    """Parses Tiled's #RRGGBB or #AARRGGBB colour notation."""
    if value is None:
        return None
    value = value.strip()
    if value.startswith("#"):
        value = value[1:]
    if len(value) == 6:
        return Color(int(value[0:2], 16), int(value[2:4], 16), int(value[4:6], 16))
    if len(value) == 8:
        return Color(int(value[2:4], 16), int(value[4:6], 16), int(value[6:8], 16), int(value[0:2], 16))
    raise ValueError(f"Unsupported colour value {value}")


def resolve_path(base_dir: Optional[str], filename: str) -> str:
    filename = filename.replace("\\", "/")
    filename = filename.replace("/", os.path.sep)

    full_filename = os.path.join(base_dir, filename) if base_dir else filename
    return os.path.abspath(full_filename)


def points_from_string(points: str, scale: tuple[float, float] = (1.0, 1.0)) -> list[Vector2]:
    result = []
    for pair in points.split():
        components = pair.split(",")
        if len(components) != 2:
            raise ValueError(f"This string should have 2 components separated by a comma: {pair}")
        result.append(Vector2(float(components[0]) * scale[0], float(components[1]) * scale[1]))
    return result
