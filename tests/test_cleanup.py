"""Tests for best-effort cleanup."""

from __future__ import annotations

import shutil
from pathlib import Path

import pytest

from ephemera.infra.cleanup import cleanup


def test_removes_directories_and_files(tmp_path: Path) -> None:
    directory = tmp_path / "conf"
    (directory / "nested").mkdir(parents=True)
    (directory / "nested" / "server.conf").write_text("a = 1\n")
    single = tmp_path / "service.log"
    single.write_text("log\n")

    report = cleanup([directory, single])

    assert not directory.exists()
    assert not single.exists()
    assert report.removed == [directory, single]
    assert report.clean


def test_missing_and_none_are_skipped(tmp_path: Path) -> None:
    report = cleanup([None, tmp_path / "missing", str(tmp_path / "also-missing")])

    assert report.removed == []
    assert report.clean


def test_failures_become_warnings(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    stuck = tmp_path / "stuck"
    stuck.mkdir()
    other = tmp_path / "other"
    other.mkdir()
    real_rmtree = shutil.rmtree

    def rmtree(path, *args, **kwargs):
        if Path(path) == stuck:
            raise PermissionError("device busy")
        real_rmtree(path, *args, **kwargs)

    monkeypatch.setattr(shutil, "rmtree", rmtree)

    report = cleanup([stuck, other])

    assert not report.clean
    assert "device busy" in report.warnings[0]
    assert report.removed == [other]
    assert stuck.exists()
