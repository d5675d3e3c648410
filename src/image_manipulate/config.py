import os
from pathlib import Path

DEFAULT_QUALITY = 75

WATERMARK_MIN_HEIGHT_PERCENT = 20
WATERMARK_MAX_HEIGHT_PERCENT = 45
WATERMARK_OPACITY_PERCENT = 30
WATERMARK_GRAVITY = "Center"
WATERMARK_HEIGHT_THRESHOLD = 300

DEFAULT_LOG_LEVEL = "WARNING"


def packaged_watermark_path() -> Path:
    return Path(__file__).resolve().parent / "assets" / "watermark.png"


def resolve_watermark_path() -> Path:
    env = os.getenv("IMAGE_MANIPULATE_WATERMARK")
    if env:
        return Path(env)
    return packaged_watermark_path()


def resolve_log_level() -> str:
    return os.getenv("IMAGE_MANIPULATE_LOG_LEVEL", DEFAULT_LOG_LEVEL).upper()
