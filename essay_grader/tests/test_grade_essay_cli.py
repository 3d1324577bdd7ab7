import importlib.util
import os

import pytest

SCRIPT_PATH = os.path.abspath(
    os.path.join(os.path.dirname(__file__), "..", "..", "scripts", "grade_essay.py")
)


def _load_cli():
    spec = importlib.util.spec_from_file_location("grade_essay_cli", SCRIPT_PATH)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


@pytest.mark.parametrize(
    "extra",
    [
        ["--text", "作答", "--material-image", "/nonexistent/material.jpg"],
        ["--image", "/nonexistent/page1.jpg"],
        ["--text-file", "/nonexistent/answer.txt"],
    ],
)
def test_missing_input_file_exits_with_error(extra, capsys: pytest.CaptureFixture[str]):
    cli = _load_cli()
    rc = cli.main(["--api-base", "http://127.0.0.1:9/api/v1", "--material", "材料", *extra])
    assert rc == 1
    err = capsys.readouterr().err
    assert err.startswith("bad input:")
    assert "/nonexistent/" in err


def test_local_image_becomes_data_uri(tmp_path):
    cli = _load_cli()
    img = tmp_path / "page.png"
    img.write_bytes(b"\x89PNG\r\n")
    assert cli._image_ref(str(img)).startswith("data:image/png;base64,")
    assert cli._image_ref("https://x/1.jpg") == "https://x/1.jpg"
