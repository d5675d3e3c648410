import asyncio
import logging
from pathlib import Path
from typing import Any, BinaryIO, Dict, List, Optional, Union

from image_manipulate import __version__
from image_manipulate.config import (
    WATERMARK_GRAVITY,
    WATERMARK_OPACITY_PERCENT,
    resolve_watermark_path,
)
from image_manipulate.core.engine import RasterEngineError, RasterHandle, probe_dimensions
from image_manipulate.core.geometry import RESIZE_COVER, RESIZE_SHRINK, square_geometry, watermark_box
from image_manipulate.core.request import Action, Dimensions, ImageRequest, ManipulateOptions
from image_manipulate.errors import ManipulateError
from image_manipulate.pipeline.completion import Completion

logger = logging.getLogger(__name__)

STAGE_GEOMETRY = "geometry"
STAGE_WRITE = "write"
STAGE_WATERMARK = "watermark"
STAGE_STAT = "stat"

SUPPORTED_ACTIONS: List[str] = [action.value for action in Action]


def select_action(handle: RasterHandle, img: ImageRequest) -> RasterHandle:
    options = img.options
    quality = options.image_quality
    action = options.action

    if action is Action.RESIZE:
        return handle.resize(options.width, options.height).quality(quality)
    if action is Action.FIT:
        return (
            handle.compress("JPEG")
            .resize(options.width, options.height, RESIZE_COVER)
            .gravity("Center")
            .extent(options.width, options.height)
            .quality(quality)
        )
    if action is Action.FILL:
        color = f"#{options.bgcolor}"
        return (
            handle.background(color)
            .gravity("Center")
            .resize(options.width, options.height, RESIZE_SHRINK)
            .extent(options.width, options.height)
            .fill(color)
            .quality(quality)
        )
    if action is Action.SQUARE:
        geometry = square_geometry(img.orig_dims, options.width, options.height)
        logger.debug("square geometry for %s: %s", img.orig_dims, geometry)
        return (
            handle.resize(geometry.resize_width, geometry.resize_height)
            .quality(quality)
            .crop(geometry.size, geometry.size, geometry.crop_x, geometry.crop_y)
        )
    if action is Action.CROP:
        return handle.crop(options.width, options.height, options.crop_x, options.crop_y).quality(quality)

    logger.debug("no geometry for action %r", action)
    return handle


def apply_effects(handle: RasterHandle, options: ManipulateOptions) -> RasterHandle:
    if options.blur is True:
        handle = handle.blur(options.blur_radius, options.blur_sigma)
    if options.modulate is True:
        handle = handle.modulate(options.modulate_brightness, options.modulate_saturation, options.modulate_hue)
    return handle


def build_handle(img: ImageRequest, stream: Union[BinaryIO, str, Path]) -> RasterHandle:
    handle = RasterHandle.open(stream, img.filename())
    handle = apply_effects(select_action(handle, img), img.options)
    return handle.strip()


def watermark_handle(target: Path, image: Dimensions, watermark_path: Path, watermark: Dimensions) -> RasterHandle:
    box = watermark_box(image, watermark)
    logger.debug("watermark %s on %s: %s", watermark_path, image, box)
    return RasterHandle.open(target).composite(
        watermark_path,
        WATERMARK_OPACITY_PERCENT,
        WATERMARK_GRAVITY,
        box.box_width,
        box.box_height,
    )


def _stage_error(exc: RasterEngineError, stage: str) -> ManipulateError:
    code = "SOURCE_READ_ERROR" if exc.code == "DECODE" else "WRITE_ERROR"
    return ManipulateError(code, exc.message, stage)


async def _probe(path: Path, stage: str) -> Dimensions:
    try:
        return await asyncio.to_thread(probe_dimensions, path)
    except RasterEngineError as exc:
        raise ManipulateError("SOURCE_READ_ERROR", exc.message, stage) from exc


async def add_watermark(img: ImageRequest, watermark_path: Path) -> None:
    # the written file is probed because the queued steps never report their output size
    image_dims = await _probe(img.tmp_file, STAGE_WATERMARK)
    watermark_dims = await _probe(watermark_path, STAGE_WATERMARK)
    handle = watermark_handle(img.tmp_file, image_dims, watermark_path, watermark_dims)
    try:
        await asyncio.to_thread(handle.write, img.tmp_file)
    except RasterEngineError as exc:
        raise _stage_error(exc, STAGE_WATERMARK) from exc


async def _file_size(path: Path) -> int:
    try:
        stat = await asyncio.to_thread(path.stat)
    except OSError as exc:
        raise ManipulateError("STAT_ERROR", f"Unable to stat {path}: {exc}", STAGE_STAT) from exc
    return stat.st_size


async def _run(
    img: ImageRequest,
    stream: Union[BinaryIO, str, Path],
    completion: Completion[ImageRequest],
    watermark_path: Path,
) -> None:
    try:
        handle = build_handle(img, stream)
    except RasterEngineError as exc:
        raise ManipulateError("INVALID_INPUT", exc.message, STAGE_GEOMETRY) from exc
    logger.debug("manipulating %s with action %s (%d steps)", img.filename(), img.options.action, len(handle.steps))

    try:
        await asyncio.to_thread(handle.write, img.tmp_file)
    except RasterEngineError as exc:
        raise _stage_error(exc, STAGE_WRITE) from exc

    if img.options.watermark:
        await add_watermark(img, watermark_path)

    size = await _file_size(img.tmp_file)
    img.size = size
    completion.resolve(img)


async def manipulate(
    img: ImageRequest,
    stream: Union[BinaryIO, str, Path],
    watermark_path: Optional[Union[str, Path]] = None,
) -> ImageRequest:
    """Transform ``stream`` according to ``img.options`` and write ``img.tmp_file``.

    Returns the same descriptor with ``size`` set. Any failure is raised as a
    ``ManipulateError`` naming the failing stage, and ``size`` stays unset.
    ``watermark_path`` overrides the configured watermark asset.
    """
    img.size = None
    completion: Completion[ImageRequest] = Completion()
    asset = Path(watermark_path) if watermark_path else resolve_watermark_path()
    try:
        await _run(img, stream, completion, asset)
    except ManipulateError as exc:
        logger.warning("manipulate %s failed at %s: %s", img.filename(), exc.stage, exc.message)
        completion.reject(exc)
    except Exception as exc:
        logger.exception("manipulate %s failed", img.filename())
        error = ManipulateError("ERROR", str(exc))
        error.__cause__ = exc
        completion.reject(error)
    return await completion


def manipulate_sync(
    img: ImageRequest,
    stream: Union[BinaryIO, str, Path],
    watermark_path: Optional[Union[str, Path]] = None,
) -> ImageRequest:
    return asyncio.run(manipulate(img, stream, watermark_path))


def _require_path(path: str) -> Path:
    p = Path(path)
    if not path or not p.exists():
        raise ManipulateError("NOT_FOUND", f"File not found: {path}")
    return p


def _manipulate_file(params: Dict[str, Any]) -> Dict[str, Any]:
    source = _require_path(str(params.get("image", "")))
    target = str(params.get("tmpFile") or params.get("output") or "").strip()
    if not target:
        raise ManipulateError("INVALID_INPUT", "tmpFile is required")
    raw_options = params.get("options") or {}
    if not isinstance(raw_options, dict):
        raise ManipulateError("INVALID_INPUT", "options must be an object")
    options = ManipulateOptions.from_params(raw_options, strict=True)

    try:
        orig_dims = probe_dimensions(source)
    except RasterEngineError as exc:
        raise ManipulateError("SOURCE_READ_ERROR", exc.message, STAGE_GEOMETRY) from exc
    Path(target).parent.mkdir(parents=True, exist_ok=True)
    img = ImageRequest(
        tmp_file=Path(target),
        source_name=str(params.get("filename") or source.name),
        orig_dims=orig_dims,
        options=options,
    )
    with source.open("rb") as stream:
        manipulate_sync(img, stream, params.get("watermarkPath"))
    final_dims = probe_dimensions(img.tmp_file)
    return {**img.to_dict(), "dims": final_dims.to_dict()}


def handle_method(method: str, params: Dict[str, Any]) -> Dict[str, Any]:
    if method == "system.version":
        return {"packageVersion": __version__}
    if method == "system.actions":
        return {"actions": SUPPORTED_ACTIONS}
    if method == "image.inspect":
        image = _require_path(str(params.get("image", "")))
        try:
            return {"image": str(image), **probe_dimensions(image).to_dict()}
        except RasterEngineError as exc:
            raise ManipulateError("SOURCE_READ_ERROR", exc.message) from exc
    if method == "image.manipulate":
        return _manipulate_file(params)
    raise ManipulateError("INVALID_INPUT", f"Unknown method: {method}")
