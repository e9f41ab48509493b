"""Tests for the ExifTool-backed metadata copier and its lifetime management."""

from pathlib import Path
from typing import Any

import pytest
from exiftool.exceptions import ExifToolExecuteError

import watermark_remover.main as m


class ExifToolHelperStub:
    """Records executed parameters and lifecycle calls."""

    def __init__(self, error: Exception | None = None) -> None:
        self.error = error
        self.executed: list[tuple[str, ...]] = []
        self.running = False
        self.terminated = 0

    def run(self) -> None:
        self.running = True

    def terminate(self) -> None:
        self.running = False
        self.terminated += 1

    def execute(self, *params: str) -> str:
        self.executed.append(params)
        if self.error is not None:
            raise self.error
        return "    1 image files updated"


def test_copy_all_passes_tags_from_file_arguments(tmp_path: Path) -> None:
    """All tags are copied from source to destination, overwriting in place."""
    helper = ExifToolHelperStub()
    copier = m.MetadataCopier(helper)  # type: ignore[arg-type]
    source, destination = tmp_path / "in.jpg", tmp_path / "out.jpg"

    assert copier.copy_all(source, destination) is True
    assert helper.executed == [
        ("-TagsFromFile", str(source), "-All:All", "-overwrite_original", str(destination)),
    ]


def test_copy_all_reports_exiftool_errors(tmp_path: Path) -> None:
    """ExifTool failures are returned as False instead of raised."""
    error = ExifToolExecuteError(1, "", "Error: File not found", ["-TagsFromFile"])
    copier = m.MetadataCopier(ExifToolHelperStub(error=error))  # type: ignore[arg-type]

    assert copier.copy_all(tmp_path / "in.jpg", tmp_path / "out.jpg") is False


def test_copy_all_without_exiftool_reports_failure(tmp_path: Path) -> None:
    """A copier without a running ExifTool always reports failure."""
    copier = m.MetadataCopier(None)

    assert copier.copy_all(tmp_path / "in.jpg", tmp_path / "out.jpg") is False


def test_open_metadata_copier_terminates_on_success(monkeypatch: pytest.MonkeyPatch) -> None:
    """ExifTool is started once and terminated when the block ends."""
    helper = ExifToolHelperStub()
    monkeypatch.setattr(m, "ExifToolHelper", lambda: helper)

    with m.open_metadata_copier() as copier:
        assert copier.helper is helper
        assert helper.running

    assert helper.terminated == 1


def test_open_metadata_copier_terminates_on_error(monkeypatch: pytest.MonkeyPatch) -> None:
    """ExifTool is terminated even when the batch raises."""
    helper = ExifToolHelperStub()
    monkeypatch.setattr(m, "ExifToolHelper", lambda: helper)

    with pytest.raises(RuntimeError), m.open_metadata_copier():
        msg = "boom"
        raise RuntimeError(msg)

    assert helper.terminated == 1


def test_open_metadata_copier_without_exiftool(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    """A missing ExifTool executable still yields a (failing) copier."""

    def missing(*_: Any) -> None:  # noqa: ANN401
        msg = '"exiftool" is not found, on path or as absolute path'
        raise FileNotFoundError(msg)

    monkeypatch.setattr(m, "ExifToolHelper", missing)

    with m.open_metadata_copier() as copier:
        assert copier.helper is None
        assert copier.copy_all(tmp_path / "in.jpg", tmp_path / "out.jpg") is False
