"""Atomic batch writer for the active-response log."""

import errno
import logging
import os
import shutil
import tempfile

logger = logging.getLogger(__name__)


def _temp_file(directory):
    return tempfile.mkstemp(prefix="schtask-", suffix=".tmp", dir=directory)


def _replace(tmp_path, path, parent):
    """Rename ``tmp_path`` over ``path``, staging it beside ``path`` first when
    the two live on different volumes."""
    try:
        os.replace(tmp_path, path)
    except OSError as e:
        if e.errno != errno.EXDEV:
            raise
        fd, staged = _temp_file(parent or os.curdir)
        os.close(fd)
        try:
            shutil.copyfile(tmp_path, staged)
            os.replace(staged, path)
        except BaseException:
            if os.path.exists(staged):
                os.remove(staged)
            raise
        os.remove(tmp_path)


def write_batch(lines, path, scratch_dir=None) -> str:
    """Replace ``path`` with ``lines``, one per line.

    The batch goes to a temp file first (next to ``path`` unless
    ``scratch_dir`` is given) and is renamed over the target, so a reader
    never sees a half-written file. If the target cannot be replaced
    (typically locked by a tailing reader) the batch lands in ``path + ".new"``.
    Returns the path that was written.
    """
    path = os.fspath(path)
    parent = os.path.dirname(path)
    if parent:
        os.makedirs(parent, exist_ok=True)

    fd, tmp_path = _temp_file(scratch_dir or parent or os.curdir)
    try:
        with os.fdopen(fd, "w", encoding="ascii", newline="\n") as tmp:
            for line in lines:
                tmp.write(line)
                tmp.write("\n")

        try:
            _replace(tmp_path, path, parent)
            return path
        except OSError as e:
            fallback = path + ".new"
            logger.info("Could not replace %s (%s), writing %s instead", path, e, fallback)
            shutil.move(tmp_path, fallback)
            return fallback
    except BaseException:
        if os.path.exists(tmp_path):
            os.remove(tmp_path)
        raise
