import json
from pathlib import Path
from typing import Any, Dict, Optional

import typer

from image_manipulate import __version__
from image_manipulate.config import resolve_log_level
from image_manipulate.errors import ERROR_CODES, PROTOCOL_VERSION, ManipulateError
from image_manipulate.logging_utils import configure_logging
from image_manipulate.pipeline.operations import handle_method

app = typer.Typer(add_completion=False, help="Resize, crop, blur and watermark uploaded images")


def _print(payload: Dict[str, Any]) -> None:
    typer.echo(json.dumps(payload, indent=2))


def _ok(command: str, data: Dict[str, Any]) -> None:
    _print({"ok": True, "protocolVersion": PROTOCOL_VERSION, "command": command, "data": data})


def _fail(command: str, code: str, message: str, stage: Optional[str] = None) -> None:
    _print(
        {
            "ok": False,
            "protocolVersion": PROTOCOL_VERSION,
            "command": command,
            "error": {"code": code, "message": message, "stage": stage},
        }
    )
    raise SystemExit(ERROR_CODES.get(code, 1))


def _call(command: str, method: str, params: Dict[str, Any]) -> Dict[str, Any]:
    try:
        return handle_method(method, params)
    except ManipulateError as exc:
        _fail(command, exc.code, exc.message, exc.stage)
    except Exception as exc:  # pragma: no cover
        _fail(command, "ERROR", str(exc))
    raise RuntimeError("unreachable")


@app.callback()
def main_callback(
    log_level: Optional[str] = typer.Option(None, "--log-level", help="Logging level, defaults to IMAGE_MANIPULATE_LOG_LEVEL"),
    log_file: Optional[Path] = typer.Option(None, "--log-file"),
) -> None:
    configure_logging(log_level or resolve_log_level(), str(log_file) if log_file else None)


@app.command("actions")
def actions() -> None:
    _ok("actions", _call("actions", "system.actions", {}))


@app.command("inspect")
def inspect_image(image: Path) -> None:
    _ok("inspect", _call("inspect", "image.inspect", {"image": str(image)}))


@app.command("manipulate")
def manipulate_image(
    image: Path,
    output: Path,
    action: Optional[str] = typer.Option(None, "--action", help="resize, fit, fill, square or crop"),
    width: Optional[int] = typer.Option(None, "--width"),
    height: Optional[int] = typer.Option(None, "--height"),
    crop_x: Optional[int] = typer.Option(None, "--crop-x"),
    crop_y: Optional[int] = typer.Option(None, "--crop-y"),
    bgcolor: Optional[str] = typer.Option(None, "--bgcolor"),
    quality: Optional[int] = typer.Option(None, "--quality"),
    blur: bool = typer.Option(False, "--blur"),
    blur_radius: Optional[float] = typer.Option(None, "--blur-radius"),
    blur_sigma: Optional[float] = typer.Option(None, "--blur-sigma"),
    modulate: bool = typer.Option(False, "--modulate"),
    modulate_brightness: Optional[float] = typer.Option(None, "--modulate-brightness"),
    modulate_saturation: Optional[float] = typer.Option(None, "--modulate-saturation"),
    modulate_hue: Optional[float] = typer.Option(None, "--modulate-hue"),
    watermark: bool = typer.Option(False, "--watermark"),
    watermark_path: Optional[Path] = typer.Option(None, "--watermark-path"),
    options_json: str = typer.Option("{}", "--options-json"),
) -> None:
    try:
        options = json.loads(options_json)
    except json.JSONDecodeError as exc:
        _fail("manipulate", "INVALID_INPUT", f"Invalid JSON: {exc}")
    if not isinstance(options, dict):
        _fail("manipulate", "INVALID_INPUT", "options-json must be an object")

    flags = {
        "action": action,
        "width": width,
        "height": height,
        "cropX": crop_x,
        "cropY": crop_y,
        "bgcolor": bgcolor,
        "quality": quality,
        "blurRadius": blur_radius,
        "blurSigma": blur_sigma,
        "modulateBrightness": modulate_brightness,
        "modulateSaturation": modulate_saturation,
        "modulateHue": modulate_hue,
    }
    options.update({key: value for key, value in flags.items() if value is not None})
    if blur:
        options["blur"] = True
    if modulate:
        options["modulate"] = True
    if watermark:
        options["watermark"] = True

    params: Dict[str, Any] = {"image": str(image), "tmpFile": str(output), "options": options}
    if watermark_path:
        params["watermarkPath"] = str(watermark_path)
    _ok("manipulate", _call("manipulate", "image.manipulate", params))


@app.command("version")
def version() -> None:
    _ok("version", {"packageVersion": __version__, "protocolVersion": PROTOCOL_VERSION})


def main() -> None:
    app()
