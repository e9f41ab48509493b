"""Tests for the command-line entry point."""

from pathlib import Path
from types import SimpleNamespace
from typing import Any

import pytest

import watermark_remover.main as m


def _run(tmp_path: Path, **kwargs: Any) -> None:  # noqa: ANN401
    m.run(
        input_dir=tmp_path / "input",
        output_dir=tmp_path / "output",
        file_log_level="OFF",
        console_log_level="OFF",
        log_folder=tmp_path / "logs",
        **kwargs,
    )


def test_run_exits_when_api_key_missing(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """A missing credential is fatal before any directory or file is touched."""
    monkeypatch.delenv(m.API_KEY_ENV_VAR, raising=False)

    with pytest.raises(SystemExit) as excinfo:
        _run(tmp_path)

    assert excinfo.value.code == 1
    assert not (tmp_path / "output").exists()


def test_resolve_api_key_prefers_explicit_value(monkeypatch: pytest.MonkeyPatch) -> None:
    """--api-key wins over the environment, which is the fallback."""
    monkeypatch.setenv(m.API_KEY_ENV_VAR, "from-env")

    assert m.resolve_api_key("explicit") == "explicit"
    assert m.resolve_api_key() == "from-env"


def _missing_exiftool() -> None:
    msg = '"exiftool" is not found, on path or as absolute path'
    raise FileNotFoundError(msg)


class _GenaiClientStub:
    """genai.Client replacement returning the same image for every request."""

    def __init__(self, image: bytes, **kwargs: Any) -> None:  # noqa: ANN401
        self.kwargs = kwargs
        self.models = SimpleNamespace(generate_content=self._generate_content)
        self._image = image

    def _generate_content(self, **_: Any) -> dict[str, Any]:  # noqa: ANN401
        return {"candidates": [{"content": {"parts": [{"inline_data": {"data": self._image}}]}}]}


def test_run_single_shot_end_to_end(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
    png_bytes: bytes,
    jpeg_bytes: bytes,
) -> None:
    """--no-review cleans every file, creates the output folder and exits normally."""
    monkeypatch.setenv(m.API_KEY_ENV_VAR, "test-key")
    monkeypatch.setattr(m.genai, "Client", lambda **kw: _GenaiClientStub(png_bytes, **kw))
    monkeypatch.setattr(m, "ExifToolHelper", _missing_exiftool)
    (tmp_path / "input").mkdir()
    (tmp_path / "input" / "one.jpg").write_bytes(jpeg_bytes)
    (tmp_path / "input" / "two.JPG").write_bytes(jpeg_bytes)

    _run(tmp_path, review=False)

    for name in ("one.jpg", "two.JPG"):
        output = tmp_path / "output" / name
        assert m.classify_image_bytes(output.read_bytes()) is m.ImageFormat.JPEG
        assert (tmp_path / "input" / name).exists()


def test_run_creates_missing_folders(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Input and output folders are bootstrapped when absent."""
    monkeypatch.setenv(m.API_KEY_ENV_VAR, "test-key")
    monkeypatch.setattr(m.genai, "Client", lambda **kw: _GenaiClientStub(b"", **kw))
    monkeypatch.setattr(m, "ExifToolHelper", _missing_exiftool)

    _run(tmp_path)

    assert (tmp_path / "input").is_dir()
    assert (tmp_path / "output").is_dir()


def test_run_logs_environment_key_source(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """A key taken from GEMINI_API_KEY is logged as present, from the environment."""
    monkeypatch.setenv(m.API_KEY_ENV_VAR, "test-key")
    monkeypatch.setattr(m.genai, "Client", lambda **kw: _GenaiClientStub(b"", **kw))
    monkeypatch.setattr(m, "ExifToolHelper", _missing_exiftool)
    monkeypatch.setattr(m, "setup_logging", lambda **_: None)
    records: list[dict[str, Any]] = []
    sink_id = m.logger.add(lambda message: records.append(message.record), level="DEBUG")
    try:
        _run(tmp_path, review=False)
    finally:
        m.logger.remove(sink_id)

    resolved = [r for r in records if r["message"] == "api_key_resolved"]
    assert [r["extra"]["source"] for r in resolved] == ["environment"]
    starting = next(r for r in records if r["message"] == "starting_watermark_remover")
    assert "api_key_present" not in starting["extra"]
