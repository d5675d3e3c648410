from pathlib import Path
from typing import Callable, Tuple

import pytest
from PIL import Image


@pytest.fixture
def make_image(tmp_path: Path) -> Callable[..., Path]:
    def _make(
        name: str = "source.png",
        size: Tuple[int, int] = (800, 400),
        color: Tuple[int, ...] = (200, 30, 30),
        mode: str = "RGB",
    ) -> Path:
        path = tmp_path / name
        Image.new(mode, size, color).save(path)
        return path

    return _make


@pytest.fixture
def watermark_file(tmp_path: Path) -> Path:
    path = tmp_path / "watermark.png"
    Image.new("RGBA", (60, 20), (0, 0, 0, 255)).save(path)
    return path
