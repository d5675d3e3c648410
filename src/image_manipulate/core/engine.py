"""Pillow-backed raster engine.

A ``RasterHandle`` is an immutable list of step descriptors bound to a
source. Adding a step returns a new handle; nothing is decoded until
``write()`` materializes the result. Steps are grouped in phases (geometry,
effects, metadata, composite) and a handle refuses a step from an earlier
phase than the last one queued.
"""

import logging
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, BinaryIO, Dict, Optional, Tuple, Union

from PIL import Image, ImageColor, ImageEnhance, ImageFilter, ImageOps

from image_manipulate.core.geometry import (
    GRAVITIES,
    RESIZE_COVER,
    RESIZE_FIT,
    RESIZE_SHRINK,
    gravity_offset,
    proportional_size,
    round_half_up,
)
from image_manipulate.core.request import Dimensions, Number

logger = logging.getLogger(__name__)

Source = Union[str, Path, BinaryIO]

PHASE_GEOMETRY = 0
PHASE_EFFECT = 1
PHASE_METADATA = 2
PHASE_COMPOSITE = 3


class RasterEngineError(Exception):
    def __init__(self, code: str, message: str):
        super().__init__(message)
        self.code = code
        self.message = message


@dataclass
class RenderState:
    image: Image.Image
    source_format: Optional[str] = None
    background: str = "#ffffff"
    gravity: str = "Center"
    quality: Optional[Number] = None
    output_format: Optional[str] = None


@dataclass(frozen=True)
class Step:
    phase = PHASE_GEOMETRY

    def apply(self, state: RenderState) -> None:
        raise NotImplementedError


@dataclass(frozen=True)
class Resize(Step):
    width: Optional[Number]
    height: Optional[Number]
    mode: str = RESIZE_FIT

    def apply(self, state: RenderState) -> None:
        image = state.image
        if self.width is None or self.height is None:
            size = proportional_size(image.width, image.height, self.width, self.height)
            if self.mode == RESIZE_SHRINK and size[0] >= image.width:
                return
            if size != image.size:
                state.image = image.resize(size, Image.Resampling.LANCZOS)
            return

        box = (round_half_up(self.width), round_half_up(self.height))
        if self.mode == RESIZE_COVER:
            state.image = ImageOps.cover(image, box, method=Image.Resampling.LANCZOS)
        elif self.mode == RESIZE_SHRINK:
            image.thumbnail(box, resample=Image.Resampling.LANCZOS)
        else:
            state.image = ImageOps.contain(image, box, method=Image.Resampling.LANCZOS)


@dataclass(frozen=True)
class Background(Step):
    color: str

    def apply(self, state: RenderState) -> None:
        ImageColor.getrgb(self.color)
        state.background = self.color


@dataclass(frozen=True)
class Fill(Step):
    """Validates the fill color only; the padding color comes from ``Background``."""

    color: str

    def apply(self, state: RenderState) -> None:
        ImageColor.getrgb(self.color)


@dataclass(frozen=True)
class Gravity(Step):
    name: str

    def apply(self, state: RenderState) -> None:
        if self.name not in GRAVITIES:
            raise ValueError(f"Unknown gravity: {self.name}")
        state.gravity = self.name


@dataclass(frozen=True)
class Extent(Step):
    width: Number
    height: Number

    def apply(self, state: RenderState) -> None:
        size = (int(self.width), int(self.height))
        if size[0] <= 0 or size[1] <= 0:
            raise ValueError(f"Invalid extent: {size[0]}x{size[1]}")
        image = state.image
        mode = image.mode if image.mode in ("RGB", "RGBA", "L", "LA") else "RGBA"
        if image.mode != mode:
            image = image.convert(mode)
        canvas = Image.new(mode, size, ImageColor.getcolor(state.background, mode))
        canvas.paste(image, gravity_offset(state.gravity, size, image.size))
        state.image = canvas


@dataclass(frozen=True)
class Crop(Step):
    width: Number
    height: Number
    x: Number = 0
    y: Number = 0

    def apply(self, state: RenderState) -> None:
        left = max(0, int(self.x or 0))
        top = max(0, int(self.y or 0))
        right = min(state.image.width, int(self.x or 0) + int(self.width))
        bottom = min(state.image.height, int(self.y or 0) + int(self.height))
        if right <= left or bottom <= top:
            raise ValueError("Crop geometry does not overlap the image")
        state.image = state.image.crop((left, top, right, bottom))


@dataclass(frozen=True)
class Quality(Step):
    value: Number

    def apply(self, state: RenderState) -> None:
        state.quality = self.value


@dataclass(frozen=True)
class OutputFormat(Step):
    name: str

    def apply(self, state: RenderState) -> None:
        state.output_format = self.name.upper()


@dataclass(frozen=True)
class Blur(Step):
    phase = PHASE_EFFECT
    radius: Optional[Number] = None
    sigma: Optional[Number] = None

    def apply(self, state: RenderState) -> None:
        # Pillow's gaussian radius is the standard deviation
        spread = self.sigma if self.sigma is not None else (self.radius or 0)
        state.image = state.image.filter(ImageFilter.GaussianBlur(radius=spread))


@dataclass(frozen=True)
class Modulate(Step):
    """Brightness, saturation and hue in percent; 100 leaves a channel alone."""

    phase = PHASE_EFFECT
    brightness: Optional[Number] = None
    saturation: Optional[Number] = None
    hue: Optional[Number] = None

    def apply(self, state: RenderState) -> None:
        image = state.image
        alpha = image.getchannel("A") if "A" in image.getbands() else None
        rgb = image.convert("RGB")
        brightness = 100 if self.brightness is None else self.brightness
        saturation = 100 if self.saturation is None else self.saturation
        hue = 100 if self.hue is None else self.hue
        if brightness != 100:
            rgb = ImageEnhance.Brightness(rgb).enhance(brightness / 100)
        if saturation != 100:
            rgb = ImageEnhance.Color(rgb).enhance(saturation / 100)
        if hue != 100:
            # 0..200 percent maps to -180..+180 degrees of rotation
            shift = round_half_up((hue - 100) * 1.8 / 360 * 256)
            h, s, v = rgb.convert("HSV").split()
            h = h.point(lambda value: (value + shift) % 256)
            rgb = Image.merge("HSV", (h, s, v)).convert("RGB")
        if alpha is not None:
            rgb.putalpha(alpha)
        state.image = rgb


@dataclass(frozen=True)
class StripMetadata(Step):
    phase = PHASE_METADATA

    def apply(self, state: RenderState) -> None:
        state.image.info = {}


@dataclass(frozen=True)
class Composite(Step):
    """Overlay another image, scaled to fit ``box_width x box_height``.

    ``opacity`` is the dissolve percentage applied to the overlay's alpha.
    """

    phase = PHASE_COMPOSITE
    overlay: Path
    opacity: Number = 100
    gravity: str = "Center"
    box_width: Number = 0
    box_height: Number = 0

    def apply(self, state: RenderState) -> None:
        overlay, _ = _load(self.overlay)
        overlay = overlay.convert("RGBA")
        box = (round_half_up(self.box_width), round_half_up(self.box_height))
        # a zero box keeps the overlay at its own size
        if box[0] > 0 and box[1] > 0:
            overlay = ImageOps.contain(overlay, box, method=Image.Resampling.LANCZOS)
        factor = self.opacity / 100
        overlay.putalpha(overlay.getchannel("A").point(lambda value: round_half_up(value * factor)))

        base = state.image
        original_mode = base.mode
        layer = Image.new("RGBA", base.size, (0, 0, 0, 0))
        layer.paste(overlay, gravity_offset(self.gravity, base.size, overlay.size))
        merged = Image.alpha_composite(base.convert("RGBA"), layer)
        info = base.info
        state.image = merged if original_mode == "RGBA" else merged.convert(original_mode if original_mode in ("RGB", "L") else "RGB")
        state.image.info = info


@dataclass(frozen=True)
class RasterHandle:
    source: Any
    format_hint: Optional[str] = None
    steps: Tuple[Step, ...] = field(default_factory=tuple)

    @classmethod
    def open(cls, source: Source, filename: Optional[str] = None) -> "RasterHandle":
        return cls(source=source, format_hint=format_from_name(filename) if filename else None)

    def with_step(self, step: Step) -> "RasterHandle":
        if self.steps and step.phase < self.steps[-1].phase:
            raise RasterEngineError(
                "STEP_ORDER",
                f"{type(step).__name__} cannot follow {type(self.steps[-1]).__name__}",
            )
        return replace(self, steps=self.steps + (step,))

    def resize(self, width: Optional[Number], height: Optional[Number], mode: str = RESIZE_FIT) -> "RasterHandle":
        return self.with_step(Resize(width, height, mode))

    def background(self, color: str) -> "RasterHandle":
        return self.with_step(Background(color))

    def fill(self, color: str) -> "RasterHandle":
        return self.with_step(Fill(color))

    def gravity(self, name: str) -> "RasterHandle":
        return self.with_step(Gravity(name))

    def extent(self, width: Number, height: Number) -> "RasterHandle":
        return self.with_step(Extent(width, height))

    def crop(self, width: Number, height: Number, x: Number = 0, y: Number = 0) -> "RasterHandle":
        return self.with_step(Crop(width, height, x, y))

    def quality(self, value: Number) -> "RasterHandle":
        return self.with_step(Quality(value))

    def compress(self, name: str) -> "RasterHandle":
        return self.with_step(OutputFormat(name))

    def blur(self, radius: Optional[Number], sigma: Optional[Number] = None) -> "RasterHandle":
        return self.with_step(Blur(radius, sigma))

    def modulate(
        self,
        brightness: Optional[Number],
        saturation: Optional[Number] = None,
        hue: Optional[Number] = None,
    ) -> "RasterHandle":
        return self.with_step(Modulate(brightness, saturation, hue))

    def strip(self) -> "RasterHandle":
        return self.with_step(StripMetadata())

    def composite(
        self,
        overlay: Path,
        opacity: Number,
        gravity: str,
        box_width: Number,
        box_height: Number,
    ) -> "RasterHandle":
        return self.with_step(Composite(Path(overlay), opacity, gravity, box_width, box_height))

    def render(self) -> RenderState:
        image, source_format = _load(self.source)
        state = RenderState(image=image, source_format=source_format)
        for step in self.steps:
            try:
                step.apply(state)
            except RasterEngineError:
                raise
            except Exception as exc:
                raise RasterEngineError("APPLY", f"{type(step).__name__} failed: {exc}") from exc
        return state

    def write(self, target: Union[str, Path]) -> Path:
        """Decode the source, apply every queued step and encode to ``target``."""
        state = self.render()
        output = Path(target)
        fmt = state.output_format or format_from_name(output.name) or self.format_hint or state.source_format or "PNG"
        image = state.image
        if fmt == "JPEG" and image.mode not in ("RGB", "L", "CMYK"):
            image = _flatten(image, state.background)
        logger.debug("writing %s (%dx%d, %s, %d steps)", output, image.width, image.height, fmt, len(self.steps))
        try:
            image.save(output, format=fmt, **_save_options(fmt, state.quality))
        except Exception as exc:
            raise RasterEngineError("ENCODE", f"Unable to write {output}: {exc}") from exc
        return output


def format_from_name(name: str) -> Optional[str]:
    suffix = Path(name).suffix.lower()
    if not suffix:
        return None
    return Image.registered_extensions().get(suffix)


def probe_dimensions(source: Source) -> Dimensions:
    try:
        with Image.open(source) as image:
            width, height = image.size
    except Exception as exc:
        raise RasterEngineError("DECODE", f"Unable to read image dimensions: {exc}") from exc
    return Dimensions(width=width, height=height)


def _load(source: Source) -> Tuple[Image.Image, Optional[str]]:
    try:
        if isinstance(source, (str, Path)):
            with Image.open(source) as opened:
                opened.load()
                return _normalize_mode(opened.copy()), opened.format
        opened = Image.open(source)
        opened.load()
        return _normalize_mode(opened), opened.format
    except Exception as exc:
        raise RasterEngineError("DECODE", f"Unable to decode image: {exc}") from exc


def _normalize_mode(image: Image.Image) -> Image.Image:
    if image.mode in ("RGB", "RGBA", "L", "LA"):
        return image
    has_alpha = "A" in image.getbands() or "transparency" in image.info
    return image.convert("RGBA" if has_alpha else "RGB")


def _flatten(image: Image.Image, background: str) -> Image.Image:
    rgba = image.convert("RGBA")
    canvas = Image.new("RGB", rgba.size, ImageColor.getrgb(background)[:3])
    canvas.paste(rgba, mask=rgba.getchannel("A"))
    canvas.info = image.info
    return canvas


def _save_options(fmt: str, quality: Optional[Number]) -> Dict[str, Any]:
    if quality is None:
        return {}
    if fmt in ("JPEG", "WEBP"):
        return {"quality": int(quality)}
    if fmt == "PNG":
        # zlib level is the tens digit of the quality value
        return {"compress_level": min(9, max(0, int(quality) // 10))}
    return {}
