"""Tests for the Pillow renderers."""

import io

import pytest
from PIL import Image

import renderer

PNG_SIGNATURE = b"\x89PNG\r\n\x1a\n"


def solid_png(size=(40, 40), color=(200, 50, 50, 255)):
    out = io.BytesIO()
    Image.new("RGBA", size, color).save(out, format="PNG")
    return out.getvalue()


def decode(data):
    return Image.open(io.BytesIO(data))


class TestMedalIcons:
    """Icon strips."""

    def test_row_width_follows_icon_count(self):
        data = renderer.render_medal_icons([solid_png(), solid_png(), solid_png()])
        assert data.startswith(PNG_SIGNATURE)
        width, height = decode(data).size
        assert width == 3 * renderer.ICON_SIZE + 4 * renderer.ICON_GAP
        assert height == renderer.ICON_SIZE + 2 * renderer.ICON_GAP

    def test_broken_icons_leave_empty_cards(self):
        data = renderer.render_medal_icons([b"not an image", None, solid_png()])
        assert decode(data).size[0] == 3 * renderer.ICON_SIZE + 4 * renderer.ICON_GAP

    def test_empty_strip(self):
        assert renderer.render_medal_icons([]).startswith(PNG_SIGNATURE)


class TestRankGraph:
    """Rank history graph."""

    def test_renders(self):
        data = renderer.render_rank_graph("peppy", [500, 400, 450, 300])
        assert decode(data).size == (1000, 500)

    def test_single_day(self):
        assert renderer.render_rank_graph("peppy", [42]).startswith(PNG_SIGNATURE)

    def test_empty_history(self):
        with pytest.raises(ValueError, match="no rank history"):
            renderer.render_rank_graph("peppy", [])


class TestHigherLower:
    """Side by side comparison image."""

    def test_two_covers(self):
        data = renderer.render_higher_lower(solid_png((960, 540)), solid_png((100, 100)))
        assert decode(data).size == (2 * 480 + 80, 270)

    def test_missing_cover(self):
        data = renderer.render_higher_lower(None, b"garbage")
        assert data.startswith(PNG_SIGNATURE)
