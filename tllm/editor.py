"""
Editor module for handling system text editor interactions.

This module provides functionality to:
- Discover the user's preferred editor from environment variables
- Write a buffer to a temporary file and open it in that editor
- Read the edited buffer back and clean up the temporary file
"""

import logging
import os
import platform
import shlex
import subprocess
import tempfile

from rich.console import Console

from tllm.exceptions import EditorLaunchFailure

DEFAULT_EDITOR_NIX = "vi"
DEFAULT_EDITOR_OS_X = "vim"
DEFAULT_EDITOR_WINDOWS = "notepad"

logger = logging.getLogger(__name__)

console = Console(stderr=True)


def write_temp_file(input_data="", suffix=None, prefix="tllm-", dir=None):
    """
    Create a temporary file with the given input data.

    :param input_data: Content to write to the temporary file
    :param suffix: Optional file extension (without the dot)
    :param prefix: Optional prefix for the temporary filename
    :param dir: Optional directory to create the file in
    :return: Path to the created temporary file
    """
    kwargs = {"prefix": prefix, "dir": dir}
    if suffix:
        kwargs["suffix"] = f".{suffix}"
    fd, filepath = tempfile.mkstemp(**kwargs)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(input_data)
    except Exception:
        os.remove(filepath)
        raise
    return filepath


def get_environment_editor(default=None):
    """VISUAL wins over EDITOR."""
    return os.environ.get("VISUAL", os.environ.get("EDITOR", default))


def discover_editor(editor_override=None):
    """
    Discovers and returns the appropriate editor command as a list of arguments.

    :param editor_override: Optional editor command that takes precedence
    :return: The editor command split into arguments
    :raises EditorLaunchFailure: If the editor command cannot be parsed
    """
    system = platform.system()
    if system == "Windows":
        default_editor = DEFAULT_EDITOR_WINDOWS
    elif system == "Darwin":
        default_editor = DEFAULT_EDITOR_OS_X
    else:
        default_editor = DEFAULT_EDITOR_NIX

    editor = editor_override or get_environment_editor(default_editor)
    try:
        command = shlex.split(editor, posix=(system != "Windows"))
    except ValueError as err:
        raise EditorLaunchFailure(f"Could not parse editor command {editor!r}: {err}")
    if not command:
        raise EditorLaunchFailure("Editor command is empty")
    return command


def remove_temp_file(filepath):
    try:
        os.remove(filepath)
    except FileNotFoundError:
        pass
    except PermissionError:
        console.print(
            f"WARNING: Unable to delete temporary file {filepath!r}. You may need to delete it"
            " manually.",
            style="bold red",
        )


def pipe_editor(input_data="", suffix=None, editor=None):
    """
    Opens the system editor with optional initial content and returns the edited result.

    The temporary file is removed on every exit path, including the editor
    failing to launch and the user interrupting it.

    :param input_data: Initial content to populate the editor with
    :param suffix: Optional file extension for the temporary file (e.g. "md")
    :param editor: Optional editor command that overrides $VISUAL/$EDITOR
    :return: The edited content after the editor is closed
    :raises EditorLaunchFailure: If the editor is missing or exits non-zero
    """
    filepath = write_temp_file(input_data, suffix)
    try:
        command = discover_editor(editor) + [filepath]
        logger.debug("launching editor: %s", command)
        try:
            result = subprocess.run(command)
        except OSError as err:
            raise EditorLaunchFailure(f"Could not launch editor {command[0]!r}: {err}")
        if result.returncode != 0:
            raise EditorLaunchFailure(
                f"Editor {command[0]!r} exited with status {result.returncode}"
            )
        with open(filepath, "r", encoding="utf-8", errors="replace") as f:
            return f.read()
    finally:
        remove_temp_file(filepath)
