"""
Deterministic display colors for tags and projects.

The hue is derived from the entity id so the same tag always gets the same color;
saturation and lightness depend on the theme.
"""
from typing import List

from .models import Tag, ThemeMode

GOLDEN_RATIO = 0.618033988749895


def _hash_id(value: str) -> int:
    # 32-bit string hash (h * 31 + c), wrapped like a signed int
    h = 0
    for ch in value:
        h = (ord(ch) + ((h << 5) - h)) & 0xFFFFFFFF
    if h & 0x80000000:
        h -= 0x100000000
    return abs(h)


def generate_color(entity_id: str, theme: ThemeMode = ThemeMode.LIGHT) -> str:
    """Return an ``hsl(...)`` color string for an id."""
    hue = int(360 * ((_hash_id(entity_id) * GOLDEN_RATIO) % 1))
    if theme == ThemeMode.DARK:
        return f"hsl({hue}, 70%, 65%)"
    return f"hsl({hue}, 60%, 45%)"


def initial_tags() -> List[Tag]:
    return [
        Tag(id=tag_id, name=name, color=generate_color(tag_id))
        for tag_id, name in (
            ('tag-1', 'Work'),
            ('tag-2', 'Personal'),
            ('tag-3', 'Urgent'),
            ('tag-4', 'Idea'),
        )
    ]
