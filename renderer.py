"""
Pillow renderers for images attached to bot messages. Each returns PNG bytes.
"""

import io
import os
from typing import List, Optional, Sequence

from PIL import Image, ImageDraw, ImageFont

from bot_config import BOT_DIR


BACKGROUND = (18, 18, 20, 255)
CARD = (35, 30, 45, 240)
TEXT = (255, 255, 255)
MUTED = (180, 180, 200)
ACCENT = (255, 102, 170)

ICON_SIZE = 86
ICON_GAP = 8


def _load_font(font_name: str, font_size: int):
    path = os.path.join(BOT_DIR, 'fonts', font_name)
    try:
        return ImageFont.truetype(path, font_size)
    except OSError:
        return ImageFont.load_default()


def _to_png(img: Image.Image) -> bytes:
    out = io.BytesIO()
    img.save(out, format='PNG')
    return out.getvalue()


def _open_image(data: Optional[bytes]) -> Optional[Image.Image]:
    if not data:
        return None
    try:
        img = Image.open(io.BytesIO(data))
        img.load()
        return img.convert('RGBA')
    except Exception as e:
        print(f"[WARNING] Skipping undecodable image: {e}")
        return None


def _text_width(draw: ImageDraw.ImageDraw, text: str, font) -> int:
    bbox = draw.textbbox((0, 0), text, font=font)
    return bbox[2] - bbox[0]


def render_medal_icons(icons: Sequence[Optional[bytes]]) -> bytes:
    """Lay medal icons out in a single row.

    Icons that fail to decode leave an empty card in their place so the
    order keeps matching the embed fields.
    """
    count = max(len(icons), 1)
    width = count * ICON_SIZE + (count + 1) * ICON_GAP
    height = ICON_SIZE + 2 * ICON_GAP

    img = Image.new('RGBA', (width, height), (0, 0, 0, 0))
    draw = ImageDraw.Draw(img)

    x = ICON_GAP
    for data in icons:
        draw.rounded_rectangle([x, ICON_GAP, x + ICON_SIZE, ICON_GAP + ICON_SIZE], radius=10, fill=CARD)
        icon = _open_image(data)
        if icon is not None:
            icon.thumbnail((ICON_SIZE, ICON_SIZE))
            offset_x = x + (ICON_SIZE - icon.width) // 2
            offset_y = ICON_GAP + (ICON_SIZE - icon.height) // 2
            img.paste(icon, (offset_x, offset_y), icon)
        x += ICON_SIZE + ICON_GAP

    return _to_png(img)


def render_rank_graph(username: str, history: List[int]) -> bytes:
    """Draw the global rank history (last 90 days) as a line graph.

    Lower ranks are better so the y axis is inverted.
    """
    if not history:
        raise ValueError(f"{username} has no rank history")

    canvas_w, canvas_h = 1000, 500
    margin = 40
    header_height = 60
    left_axis = 110

    img = Image.new('RGBA', (canvas_w, canvas_h), BACKGROUND)
    draw = ImageDraw.Draw(img)

    font_header = _load_font("DejaVuSans-Bold.ttf", 28)
    font_small = _load_font("DejaVuSans.ttf", 16)

    draw.rounded_rectangle([margin, margin, canvas_w - margin, margin + header_height], radius=15, fill=CARD)
    title = f"Rank history of {username}"
    draw.text((margin + 20, margin + 14), title, font=font_header, fill=TEXT)

    plot_left = margin + left_axis
    plot_right = canvas_w - margin - 20
    plot_top = margin + header_height + 30
    plot_bottom = canvas_h - margin - 30

    best, worst = min(history), max(history)
    span = max(worst - best, 1)

    for label_rank, label_y in ((best, plot_top), (worst, plot_bottom)):
        text = f"#{label_rank:,}"
        draw.text((plot_left - 15 - _text_width(draw, text, font_small), label_y - 9), text, font=font_small, fill=MUTED)
        draw.line([plot_left, label_y, plot_right, label_y], fill=(60, 60, 80), width=1)

    step = (plot_right - plot_left) / max(len(history) - 1, 1)
    points = [
        (plot_left + i * step, plot_top + (rank - best) / span * (plot_bottom - plot_top))
        for i, rank in enumerate(history)
    ]
    if len(points) == 1:
        x, y = points[0]
        draw.ellipse([x - 4, y - 4, x + 4, y + 4], fill=ACCENT)
    else:
        draw.line(points, fill=ACCENT, width=3)

    days = f"{len(history)} days ago"
    draw.text((plot_left, plot_bottom + 8), days, font=font_small, fill=MUTED)
    draw.text((plot_right - _text_width(draw, "today", font_small), plot_bottom + 8), "today", font=font_small, fill=MUTED)

    return _to_png(img)


def render_higher_lower(left: Optional[bytes], right: Optional[bytes]) -> bytes:
    """Put the two compared pictures next to each other with a "vs" between."""
    tile_w, tile_h = 480, 270
    gap = 80
    canvas_w = tile_w * 2 + gap
    img = Image.new('RGBA', (canvas_w, tile_h), BACKGROUND)
    draw = ImageDraw.Draw(img)

    for data, x in ((left, 0), (right, tile_w + gap)):
        picture = _open_image(data)
        if picture is None:
            draw.rounded_rectangle([x, 0, x + tile_w, tile_h], radius=15, fill=CARD)
            draw.text((x + tile_w // 2 - 10, tile_h // 2 - 20), "?", font=_load_font("DejaVuSans-Bold.ttf", 40), fill=MUTED)
            continue
        picture = picture.resize((tile_w, tile_h))
        img.paste(picture, (x, 0), picture)

    font_vs = _load_font("DejaVuSans-Bold.ttf", 32)
    vs_w = _text_width(draw, "vs", font_vs)
    draw.text((tile_w + (gap - vs_w) // 2, tile_h // 2 - 20), "vs", font=font_vs, fill=TEXT)

    return _to_png(img)
