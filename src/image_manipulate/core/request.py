from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

from image_manipulate.config import DEFAULT_QUALITY
from image_manipulate.errors import ManipulateError

Number = int | float


class Action(str, Enum):
    RESIZE = "resize"
    FIT = "fit"
    FILL = "fill"
    SQUARE = "square"
    CROP = "crop"

    @classmethod
    def parse(cls, value: Any) -> Optional["Action"]:
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return None


@dataclass(frozen=True)
class Dimensions:
    width: int
    height: int

    def to_dict(self) -> Dict[str, int]:
        return {"width": self.width, "height": self.height}


@dataclass(frozen=True)
class ManipulateOptions:
    action: Optional[Action] = None
    width: Optional[Number] = None
    height: Optional[Number] = None
    crop_x: Optional[Number] = None
    crop_y: Optional[Number] = None
    bgcolor: Optional[str] = None
    quality: Optional[Number] = None
    blur: bool = False
    blur_radius: Optional[Number] = None
    blur_sigma: Optional[Number] = None
    modulate: bool = False
    modulate_brightness: Optional[Number] = None
    modulate_saturation: Optional[Number] = None
    modulate_hue: Optional[Number] = None
    watermark: bool = False

    @property
    def image_quality(self) -> Number:
        return DEFAULT_QUALITY if self.quality is None else self.quality

    @classmethod
    def from_params(cls, params: Mapping[str, Any], strict: bool = False) -> "ManipulateOptions":
        """Build options from an upload-style parameter mapping.

        Keys are camelCase (``cropX``, ``blurRadius``, ``modulateHue``). Numeric
        strings are converted. With ``strict`` set, an unknown action or an
        unparseable number raises ``INVALID_INPUT``; otherwise the action falls
        back to ``None`` (no geometry) and bad numbers to unset.
        """
        raw_action = params.get("action")
        action = Action.parse(raw_action) if raw_action is not None else None
        if strict and action is None:
            raise ManipulateError("INVALID_INPUT", f"Unsupported action: {raw_action}")

        def number(key: str) -> Optional[Number]:
            return _number(params.get(key), key, strict)

        bgcolor = params.get("bgcolor")
        return cls(
            action=action,
            width=number("width"),
            height=number("height"),
            crop_x=number("cropX"),
            crop_y=number("cropY"),
            bgcolor=None if bgcolor is None else str(bgcolor).lstrip("#"),
            quality=number("quality"),
            blur=_flag(params.get("blur")),
            blur_radius=number("blurRadius"),
            blur_sigma=number("blurSigma"),
            modulate=_flag(params.get("modulate")),
            modulate_brightness=number("modulateBrightness"),
            modulate_saturation=number("modulateSaturation"),
            modulate_hue=number("modulateHue"),
            watermark=_truthy(params.get("watermark")),
        )


@dataclass
class ImageRequest:
    tmp_file: Path
    source_name: str
    orig_dims: Dimensions
    options: ManipulateOptions = field(default_factory=ManipulateOptions)
    size: Optional[int] = None

    def __post_init__(self) -> None:
        self.tmp_file = Path(self.tmp_file)

    def filename(self) -> str:
        return self.source_name

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tmpFile": str(self.tmp_file),
            "filename": self.source_name,
            "origDims": self.orig_dims.to_dict(),
            "action": self.options.action.value if self.options.action else None,
            "size": self.size,
        }


def _number(value: Any, key: str, strict: bool) -> Optional[Number]:
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        if strict:
            raise ManipulateError("INVALID_INPUT", f"{key} must be a number")
        return None
    if isinstance(value, (int, float)):
        return value
    try:
        parsed = float(str(value).strip())
    except ValueError as exc:
        if strict:
            raise ManipulateError("INVALID_INPUT", f"{key} must be a number") from exc
        return None
    return int(parsed) if parsed.is_integer() else parsed


def _flag(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() == "true"
    return value is True


def _truthy(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() not in {"", "0", "false", "no", "off"}
    return bool(value)
