"""Tests for the atomic batch writer."""

from __future__ import annotations

import errno
import logging
import os
import shutil
import tempfile

import pytest

from schtask_inventory import sink
from schtask_inventory.sink import write_batch


def test_writes_lines_and_creates_parent_dirs(tmp_path) -> None:
    target = tmp_path / "active-response" / "active-responses.log"

    written = write_batch(['{"a":1}', '{"b":2}'], target, scratch_dir=tmp_path)

    assert written == str(target)
    assert target.read_text(encoding="ascii") == '{"a":1}\n{"b":2}\n'


def test_overwrites_previous_batch(tmp_path) -> None:
    target = tmp_path / "out.log"
    target.write_text("old-1\nold-2\nold-3\n", encoding="ascii")

    write_batch(["new"], target, scratch_dir=tmp_path)

    assert target.read_text(encoding="ascii") == "new\n"


def test_leaves_no_temp_files_behind(tmp_path) -> None:
    scratch = tmp_path / "scratch"
    scratch.mkdir()

    write_batch(["x"], tmp_path / "out.log", scratch_dir=scratch)

    assert list(scratch.iterdir()) == []


def test_falls_back_to_new_when_target_is_locked(tmp_path, monkeypatch, caplog) -> None:
    target = tmp_path / "out.log"
    target.write_bytes(b"previous batch\n")
    real_replace = os.replace

    def _locked_replace(src, dst):
        if os.fspath(dst) == str(target):
            raise PermissionError(13, "The process cannot access the file")
        return real_replace(src, dst)

    monkeypatch.setattr(sink.os, "replace", _locked_replace)

    with caplog.at_level(logging.INFO, logger="schtask_inventory.sink"):
        written = write_batch(["l1", "l2"], target, scratch_dir=tmp_path)

    assert written == str(target) + ".new"
    assert target.read_bytes() == b"previous batch\n"
    assert (tmp_path / "out.log.new").read_text(encoding="ascii") == "l1\nl2\n"
    assert "out.log.new" in caplog.text


def test_falls_back_when_target_is_a_directory(tmp_path) -> None:
    target = tmp_path / "out.log"
    target.mkdir()

    written = write_batch(["l1"], target, scratch_dir=tmp_path)

    assert written.endswith(".new")
    assert target.is_dir()


def test_non_ascii_line_is_rejected_and_temp_removed(tmp_path) -> None:
    scratch = tmp_path / "scratch"
    scratch.mkdir()
    target = tmp_path / "out.log"

    with pytest.raises(UnicodeEncodeError):
        write_batch(["café"], target, scratch_dir=scratch)

    assert not target.exists()
    assert list(scratch.iterdir()) == []


def test_default_temp_file_sits_beside_target(tmp_path, monkeypatch) -> None:
    target = tmp_path / "ar" / "active-responses.log"
    sources = []
    real_replace = os.replace

    def _recording_replace(src, dst):
        sources.append(os.path.dirname(os.fspath(src)))
        return real_replace(src, dst)

    monkeypatch.setattr(sink.os, "replace", _recording_replace)

    written = write_batch(["new"], target)

    assert written == str(target)
    assert sources == [str(target.parent)]
    assert [p.name for p in target.parent.iterdir()] == ["active-responses.log"]


def test_cross_volume_scratch_still_replaces_target(tmp_path, monkeypatch) -> None:
    scratch = tmp_path / "scratch"
    scratch.mkdir()
    target = tmp_path / "ar" / "active-responses.log"
    target.parent.mkdir()
    target.write_text("old\n", encoding="ascii")
    real_replace = os.replace

    def _no_cross_device(src, dst):
        if os.path.dirname(os.fspath(src)) == str(scratch):
            raise OSError(errno.EXDEV, "Invalid cross-device link")
        return real_replace(src, dst)

    monkeypatch.setattr(sink.os, "replace", _no_cross_device)

    written = write_batch(["new"], target, scratch_dir=scratch)

    assert written == str(target)
    assert target.read_text(encoding="ascii") == "new\n"
    assert list(scratch.iterdir()) == []
    assert [p.name for p in target.parent.iterdir()] == ["active-responses.log"]


@pytest.mark.skipif(not os.path.isdir("/dev/shm"), reason="needs a second filesystem")
def test_scratch_on_other_filesystem(tmp_path) -> None:
    scratch = tempfile.mkdtemp(dir="/dev/shm")
    try:
        if os.stat(scratch).st_dev == os.stat(tmp_path).st_dev:
            pytest.skip("/dev/shm shares the filesystem with tmp_path")
        target = tmp_path / "active-responses.log"
        target.write_text("old\n", encoding="ascii")

        written = write_batch(["new"], target, scratch_dir=scratch)

        assert written == str(target)
        assert target.read_text(encoding="ascii") == "new\n"
        assert os.listdir(scratch) == []
    finally:
        shutil.rmtree(scratch, ignore_errors=True)
