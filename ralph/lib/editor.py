"""
External editor support.

Writes text to a temp file, runs $EDITOR (then $VISUAL, then vim) on it
and returns the edited text. The caller passes the terminal suspend
context; it is exited on both the success and the failure path.
"""

import contextlib
import logging
import os
import shlex
import subprocess
import tempfile
import time
from pathlib import Path
from typing import ContextManager, Optional

logger = logging.getLogger(__name__)

DEFAULT_EDITOR = "vim"


class EditorError(Exception):
    """Editor could not be run or its file could not be read back."""

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        self.message = message
        self.cause = cause
        super().__init__(message + (f": {cause}" if cause else ""))


def resolve_editor() -> str:
    return os.environ.get("EDITOR") or os.environ.get("VISUAL") or DEFAULT_EDITOR


def open_editor(text: str, suspend: Optional[ContextManager] = None) -> str:
    """Open text in the user's editor and return the edited content.

    Args:
        text: Initial file content
        suspend: Context manager that hands the terminal to the editor
            (e.g. Textual's App.suspend()); defaults to a no-op

    Raises:
        EditorError: If the temp file can't be written or read, the editor
            can't be started, or it exits non-zero
    """
    editor = resolve_editor()
    tmp_file = Path(tempfile.gettempdir()) / f"ralph-spec-{int(time.time() * 1000)}.md"

    try:
        tmp_file.write_text(text, encoding="utf-8")
    except OSError as e:
        raise EditorError("Failed to write temp file", e) from e

    try:
        logger.info(f"Opening {tmp_file} in {editor}")
        with suspend if suspend is not None else contextlib.nullcontext():
            try:
                result = subprocess.run([*shlex.split(editor), str(tmp_file)])
            except OSError as e:
                raise EditorError("Failed to spawn editor", e) from e

        if result.returncode != 0:
            raise EditorError(f"Editor exited with code {result.returncode}")

        try:
            return tmp_file.read_text(encoding="utf-8")
        except OSError as e:
            raise EditorError("Failed to read temp file", e) from e
    finally:
        try:
            tmp_file.unlink()
        except OSError:
            logger.debug(f"Could not remove {tmp_file}")
