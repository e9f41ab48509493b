"""Shared fixtures: tiny in-memory images for the review and encoding tests."""

from io import BytesIO

import pytest
from PIL import Image


def _encode(mode: str, color: tuple[int, ...], fmt: str) -> bytes:
    buf = BytesIO()
    Image.new(mode, (8, 6), color).save(buf, format=fmt)
    return buf.getvalue()


@pytest.fixture
def png_bytes() -> bytes:
    """Opaque 8x6 PNG, the typical shape of a model-returned image."""
    return _encode("RGB", (200, 40, 40), "PNG")


@pytest.fixture
def transparent_png_bytes() -> bytes:
    """Fully transparent 8x6 PNG."""
    return _encode("RGBA", (0, 0, 0, 0), "PNG")


@pytest.fixture
def jpeg_bytes() -> bytes:
    """8x6 JPEG used as an original input."""
    return _encode("RGB", (10, 120, 200), "JPEG")
