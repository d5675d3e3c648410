import json
from pathlib import Path

import pytest
from PIL import Image

from image_manipulate.core import engine
from image_manipulate.core.engine import RasterHandle
from image_manipulate.core.geometry import RESIZE_COVER, RESIZE_SHRINK
from image_manipulate.core.request import Dimensions, ImageRequest, ManipulateOptions
from image_manipulate.errors import ManipulateError
from image_manipulate.pipeline import operations


def _request(tmp_path: Path, params: dict, dims: Dimensions = Dimensions(800, 400)) -> ImageRequest:
    return ImageRequest(
        tmp_file=tmp_path / "out.jpg",
        source_name="upload.jpg",
        orig_dims=dims,
        options=ManipulateOptions.from_params(params),
    )


def _steps(tmp_path: Path, params: dict, dims: Dimensions = Dimensions(800, 400)) -> tuple:
    img = _request(tmp_path, params, dims)
    return operations.select_action(RasterHandle.open(b"", img.filename()), img).steps


def test_actions_lists_supported_actions() -> None:
    data = operations.handle_method("system.actions", {})
    assert data["actions"] == ["resize", "fit", "fill", "square", "crop"]


def test_resize_steps(tmp_path: Path) -> None:
    steps = _steps(tmp_path, {"action": "resize", "width": 100, "height": 50})
    assert steps == (engine.Resize(100, 50), engine.Quality(75))


def test_fit_steps(tmp_path: Path) -> None:
    steps = _steps(tmp_path, {"action": "fit", "width": 100, "height": 50, "quality": 90})
    assert steps == (
        engine.OutputFormat("JPEG"),
        engine.Resize(100, 50, RESIZE_COVER),
        engine.Gravity("Center"),
        engine.Extent(100, 50),
        engine.Quality(90),
    )


def test_fill_steps(tmp_path: Path) -> None:
    steps = _steps(tmp_path, {"action": "fill", "width": 100, "height": 50, "bgcolor": "ff0000"})
    assert steps == (
        engine.Background("#ff0000"),
        engine.Gravity("Center"),
        engine.Resize(100, 50, RESIZE_SHRINK),
        engine.Extent(100, 50),
        engine.Fill("#ff0000"),
        engine.Quality(75),
    )


def test_square_steps_landscape(tmp_path: Path) -> None:
    steps = _steps(tmp_path, {"action": "square", "width": 640, "height": 400})
    assert steps == (engine.Resize(None, 400), engine.Quality(75), engine.Crop(400, 400, 200, 0))


def test_square_steps_portrait(tmp_path: Path) -> None:
    steps = _steps(tmp_path, {"action": "square", "width": 1000, "height": 1000}, Dimensions(300, 600))
    assert steps == (engine.Resize(300, None), engine.Quality(75), engine.Crop(300, 300, 0, 150))


def test_crop_steps(tmp_path: Path) -> None:
    steps = _steps(tmp_path, {"action": "crop", "width": 10, "height": 20, "cropX": 3, "cropY": 4})
    assert steps == (engine.Crop(10, 20, 3, 4), engine.Quality(75))


def test_unknown_action_has_no_geometry(tmp_path: Path) -> None:
    assert _steps(tmp_path, {"action": "rotate", "width": 10}) == ()


def test_build_handle_appends_effects_and_strip(tmp_path: Path) -> None:
    img = _request(
        tmp_path,
        {
            "action": "resize",
            "width": 10,
            "height": 10,
            "blur": True,
            "blurRadius": 0,
            "blurSigma": 3,
            "modulate": True,
            "modulateBrightness": 120,
        },
    )
    steps = operations.build_handle(img, b"").steps
    assert steps[-3:] == (engine.Blur(0, 3), engine.Modulate(120, None, None), engine.StripMetadata())


def test_build_handle_skips_effects_unless_enabled(tmp_path: Path) -> None:
    img = _request(tmp_path, {"action": "crop", "width": 1, "height": 1, "blurRadius": 5, "modulateHue": 10})
    kinds = [type(step) for step in operations.build_handle(img, b"").steps]
    assert engine.Blur not in kinds
    assert engine.Modulate not in kinds
    assert kinds[-1] is engine.StripMetadata


def test_inspect(make_image) -> None:
    out = operations.handle_method("image.inspect", {"image": str(make_image(size=(64, 32)))})
    assert out["width"] == 64
    assert out["height"] == 32


def test_inspect_missing_file(tmp_path: Path) -> None:
    with pytest.raises(ManipulateError) as info:
        operations.handle_method("image.inspect", {"image": str(tmp_path / "nope.png")})
    assert info.value.code == "NOT_FOUND"


def test_manipulate_method_probes_original_dims(make_image, tmp_path: Path) -> None:
    source = make_image("photo.jpg", size=(800, 400))
    target = tmp_path / "tmp" / "out.jpg"
    out = operations.handle_method(
        "image.manipulate",
        {"image": str(source), "tmpFile": str(target), "options": {"action": "square", "width": 200, "height": 200}},
    )
    assert out["origDims"] == {"width": 800, "height": 400}
    assert out["dims"] == {"width": 200, "height": 200}
    assert out["size"] == target.stat().st_size
    json.dumps(out)


def test_manipulate_method_rejects_unknown_action(make_image, tmp_path: Path) -> None:
    with pytest.raises(ManipulateError) as info:
        operations.handle_method(
            "image.manipulate",
            {"image": str(make_image()), "tmpFile": str(tmp_path / "out.png"), "options": {"action": "rotate"}},
        )
    assert info.value.code == "INVALID_INPUT"
    assert not (tmp_path / "out.png").exists()


def test_manipulate_method_requires_target(make_image) -> None:
    with pytest.raises(ManipulateError) as info:
        operations.handle_method("image.manipulate", {"image": str(make_image()), "options": {"action": "resize"}})
    assert info.value.code == "INVALID_INPUT"


def test_unknown_method() -> None:
    with pytest.raises(ManipulateError) as info:
        operations.handle_method("image.rotate", {})
    assert info.value.code == "INVALID_INPUT"


def test_watermark_handle_uses_box(tmp_path: Path, watermark_file: Path) -> None:
    target = tmp_path / "out.png"
    Image.new("RGB", (500, 450), (255, 255, 255)).save(target)
    handle = operations.watermark_handle(target, Dimensions(500, 450), watermark_file, Dimensions(60, 20))
    step = handle.steps[0]
    assert isinstance(step, engine.Composite)
    assert step.opacity == 30
    assert step.gravity == "Center"
    assert (step.box_width, step.box_height) == (80, 240)
