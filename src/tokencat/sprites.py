"""Cat sprite frames drawn with Pillow, one short loop per cat state."""

from __future__ import annotations

from functools import lru_cache

from PIL import Image, ImageDraw

from .config import COLOR_CAT, color_for_state
from .state import CatState

ICON_SIZE = 64
# Rendered at 2x then downsampled for anti-aliasing
_SCALE = 2


def _hex_to_rgb(hex_color: str) -> tuple[int, int, int]:
    """Convert '#rrggbb' to (r, g, b)."""
    h = hex_color.lstrip("#")
    return (int(h[0:2], 16), int(h[2:4], 16), int(h[4:6], 16))


def _draw_cat(draw: ImageDraw.ImageDraw, s: int, *, bob: int = 0, eyes: str = "open",
              tail: int = 0, legs: int | None = None) -> None:
    """Body, head, ears, eyes, tail and (optionally) moving legs."""
    cat = _hex_to_rgb(COLOR_CAT)
    u = s // 32  # grid unit

    # Body
    draw.ellipse([8 * u, (15 + bob) * u, 24 * u, (25 + bob) * u], fill=cat)
    # Head
    draw.ellipse([17 * u, (8 + bob) * u, 27 * u, (17 + bob) * u], fill=cat)
    # Ears
    draw.polygon([(18 * u, (10 + bob) * u), (19 * u, (5 + bob) * u), (22 * u, (9 + bob) * u)], fill=cat)
    draw.polygon([(22 * u, (9 + bob) * u), (25 * u, (5 + bob) * u), (26 * u, (11 + bob) * u)], fill=cat)

    # Tail sweeps between three positions
    tail_tip = [(3 * u, (11 + bob) * u), (2 * u, (16 + bob) * u), (4 * u, (21 + bob) * u)][tail % 3]
    draw.line([(9 * u, (19 + bob) * u), tail_tip], fill=cat, width=2 * u)

    # Eyes
    eye_color = (255, 255, 255)
    if eyes == "open":
        draw.ellipse([19 * u, (11 + bob) * u, 21 * u, (13 + bob) * u], fill=eye_color)
        draw.ellipse([23 * u, (11 + bob) * u, 25 * u, (13 + bob) * u], fill=eye_color)
    elif eyes == "half":
        draw.rectangle([19 * u, (12 + bob) * u, 21 * u, (13 + bob) * u], fill=eye_color)
        draw.rectangle([23 * u, (12 + bob) * u, 25 * u, (13 + bob) * u], fill=eye_color)
    else:
        draw.line([(19 * u, (12 + bob) * u), (21 * u, (12 + bob) * u)], fill=eye_color, width=u)
        draw.line([(23 * u, (12 + bob) * u), (25 * u, (12 + bob) * u)], fill=eye_color, width=u)

    if legs is None:
        # Sitting: paws tucked under the body
        draw.rectangle([11 * u, (24 + bob) * u, 21 * u, (26 + bob) * u], fill=cat)
        return
    spread = [0, 2, 3, 2][legs % 4]
    for x in (10, 20):
        draw.line([(x * u, 24 * u), ((x - spread) * u, 28 * u)], fill=cat, width=2 * u)
        draw.line([((x + 2) * u, 24 * u), ((x + 2 + spread) * u, 28 * u)], fill=cat, width=2 * u)


def _draw_zs(draw: ImageDraw.ImageDraw, s: int, count: int) -> None:
    cat = _hex_to_rgb(COLOR_CAT)
    u = s // 32
    for i in range(count):
        x, y, w = (24 + 2 * i) * u, (7 - 2 * i) * u, 2 * u
        draw.line([(x, y), (x + w, y), (x, y + w), (x + w, y + w)], fill=cat, width=u)


def _frame(state: CatState, index: int) -> Image.Image:
    size = ICON_SIZE * _SCALE
    img = Image.new("RGBA", (size, size), (0, 0, 0, 0))
    draw = ImageDraw.Draw(img)
    draw.ellipse([3, 3, size - 4, size - 4], fill=_hex_to_rgb(color_for_state(state.value)))

    if state is CatState.IDLE:
        _draw_cat(draw, size, tail=index)
    elif state is CatState.ACTIVE:
        _draw_cat(draw, size, bob=-(index % 2), tail=0, legs=index)
    elif state is CatState.MODERATE:
        _draw_cat(draw, size, tail=1, legs=index)
    elif state is CatState.STRAINED:
        _draw_cat(draw, size, bob=1, eyes="half" if index == 0 else "closed", tail=2)
    else:
        _draw_cat(draw, size, bob=2, eyes="closed", tail=2)
        _draw_zs(draw, size, index + 1)

    return img.resize((ICON_SIZE, ICON_SIZE), resample=Image.LANCZOS)


_FRAME_COUNTS = {
    CatState.IDLE: 3,
    CatState.ACTIVE: 4,
    CatState.MODERATE: 4,
    CatState.STRAINED: 2,
    CatState.EXHAUSTED: 3,
}


@lru_cache(maxsize=None)
def frames_for(state: CatState) -> tuple[Image.Image, ...]:
    """The animation loop for ``state``, cached after the first draw."""
    return tuple(_frame(state, i) for i in range(_FRAME_COUNTS[state]))
