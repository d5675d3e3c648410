"""Pure geometry helpers for the manipulation pipeline.

Nothing in here touches pixels. The raster engine and the action selector
call these to turn requested sizes into concrete pixel boxes.
"""

import math
from dataclasses import dataclass
from typing import Optional, Tuple

from image_manipulate.config import (
    WATERMARK_HEIGHT_THRESHOLD,
    WATERMARK_MAX_HEIGHT_PERCENT,
    WATERMARK_MIN_HEIGHT_PERCENT,
)
from image_manipulate.core.request import Dimensions, Number

RESIZE_FIT = "fit"
RESIZE_COVER = "cover"
RESIZE_SHRINK = "shrink"

GRAVITIES = {
    "NorthWest": (0.0, 0.0),
    "North": (0.5, 0.0),
    "NorthEast": (1.0, 0.0),
    "West": (0.0, 0.5),
    "Center": (0.5, 0.5),
    "East": (1.0, 0.5),
    "SouthWest": (0.0, 1.0),
    "South": (0.5, 1.0),
    "SouthEast": (1.0, 1.0),
}


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


@dataclass(frozen=True)
class SquareGeometry:
    resize_width: Optional[int]
    resize_height: Optional[int]
    size: int
    scaled_width: float
    scaled_height: float
    crop_x: int
    crop_y: int


def square_geometry(orig: Dimensions, width: Optional[Number], height: Optional[Number]) -> SquareGeometry:
    """Resize target and centered crop box for the square action.

    The shorter original side constrains the result. Landscape and square
    originals use the requested ``height``; portrait originals use the
    requested ``width``. The request is clamped to the original side so the
    constraining axis is never upscaled. Only that axis is handed to resize,
    the other one follows proportionally.
    """
    if orig.width >= orig.height:
        target = _clamp(height, orig.height)
        scaled_height = float(target)
        scaled_width = target / orig.height * orig.width
        return SquareGeometry(
            resize_width=None,
            resize_height=target,
            size=target,
            scaled_width=scaled_width,
            scaled_height=scaled_height,
            crop_x=round_half_up((scaled_width - target) / 2),
            crop_y=0,
        )

    target = _clamp(width, orig.width)
    scaled_width = float(target)
    scaled_height = target / orig.width * orig.height
    return SquareGeometry(
        resize_width=target,
        resize_height=None,
        size=target,
        scaled_width=scaled_width,
        scaled_height=scaled_height,
        crop_x=0,
        crop_y=round_half_up((scaled_height - target) / 2),
    )


def _clamp(requested: Optional[Number], original: int) -> int:
    # a missing request means "as large as the original allows"
    if requested is None or requested > original:
        return original
    return int(requested)


def proportional_size(
    width: int,
    height: int,
    target_width: Optional[Number],
    target_height: Optional[Number],
) -> Tuple[int, int]:
    """Output size when at most one side of the resize is given.

    The missing side follows the aspect ratio. Boxes with both sides set are
    handled by ``ImageOps`` in the engine.
    """
    if target_width is None and target_height is None:
        return width, height
    if target_width is None:
        scale = target_height / height
    else:
        scale = target_width / width
    return max(1, round_half_up(width * scale)), max(1, round_half_up(height * scale))


def gravity_offset(gravity: str, outer: Tuple[int, int], inner: Tuple[int, int]) -> Tuple[int, int]:
    try:
        fx, fy = GRAVITIES[gravity]
    except KeyError as exc:
        raise ValueError(f"Unknown gravity: {gravity}") from exc
    return int((outer[0] - inner[0]) * fx), int((outer[1] - inner[1]) * fy)


@dataclass(frozen=True)
class WatermarkBox:
    percent: int
    normalized_height: int
    box_width: float
    box_height: float


def watermark_percent(image_height: int) -> int:
    # small images would otherwise get an unreadable watermark
    if image_height < WATERMARK_HEIGHT_THRESHOLD:
        return WATERMARK_MAX_HEIGHT_PERCENT
    return WATERMARK_MIN_HEIGHT_PERCENT


def watermark_box(image: Dimensions, watermark: Dimensions) -> WatermarkBox:
    """Overlay box for the watermark on an image of the given final size.

    The image height is floored to a multiple of 100 so similar images get
    the same watermark size. The box is ``wh x ww``: its width is the height
    derived value ``wh`` and its height is ``ww``, the watermark width scaled
    by ``wh / watermark.height``.
    """
    percent = watermark_percent(image.height)
    normalized = image.height - image.height % 100
    wh = normalized / 100 * percent
    ww = wh / watermark.height * watermark.width
    return WatermarkBox(percent=percent, normalized_height=normalized, box_width=wh, box_height=ww)
