"""Pytest configuration and fixtures for tile engine tests."""

import sys
from io import BytesIO
from pathlib import Path

import pytest

# Add src directory to path for imports
src_path = Path(__file__).parent.parent / 'src'
sys.path.insert(0, str(src_path))

from PIL import Image  # noqa: E402


def make_png_bytes(color=(10, 120, 200), size=(256, 256)) -> bytes:
    """Encode a solid-colour PNG tile."""
    buf = BytesIO()
    Image.new('RGB', size, color).save(buf, format='PNG')
    return buf.getvalue()


@pytest.fixture
def png_bytes() -> bytes:
    return make_png_bytes()


@pytest.fixture
def cache_root(tmp_path) -> Path:
    root = tmp_path / 'tilemap'
    root.mkdir()
    return root
