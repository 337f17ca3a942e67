import os
from unittest.mock import MagicMock, patch

import pytest

from tllm.editor import (
    DEFAULT_EDITOR_NIX,
    DEFAULT_EDITOR_OS_X,
    DEFAULT_EDITOR_WINDOWS,
    discover_editor,
    get_environment_editor,
    pipe_editor,
    write_temp_file,
)
from tllm.exceptions import EditorLaunchFailure


def test_get_environment_editor():
    # Test with no environment variables set
    with patch.dict(os.environ, {}, clear=True):
        assert get_environment_editor("default") == "default"

    # Test EDITOR precedence
    with patch.dict(os.environ, {"EDITOR": "vim"}, clear=True):
        assert get_environment_editor() == "vim"

    # Test VISUAL overrides EDITOR
    with patch.dict(os.environ, {"EDITOR": "vim", "VISUAL": "code"}):
        assert get_environment_editor() == "code"


def test_discover_editor_defaults():
    with patch("platform.system") as mock_system:
        # Test Windows default
        mock_system.return_value = "Windows"
        with patch.dict(os.environ, {}, clear=True):
            assert discover_editor() == [DEFAULT_EDITOR_WINDOWS]

        # Test macOS default
        mock_system.return_value = "Darwin"
        with patch.dict(os.environ, {}, clear=True):
            assert discover_editor() == [DEFAULT_EDITOR_OS_X]

        # Test Linux default
        mock_system.return_value = "Linux"
        with patch.dict(os.environ, {}, clear=True):
            assert discover_editor() == [DEFAULT_EDITOR_NIX]


def test_discover_editor_override():
    # Test editor override
    assert discover_editor("code") == ["code"]
    assert discover_editor('vim -c "set noswapfile"') == ["vim", "-c", "set noswapfile"]

    # Test invalid editor command
    with pytest.raises(EditorLaunchFailure):
        discover_editor('vim "unclosed quote')


def test_write_temp_file():
    # Test basic file creation
    content = "test content"
    filepath = write_temp_file(content)
    try:
        assert os.path.exists(filepath)
        assert os.path.basename(filepath).startswith("tllm-")
        with open(filepath, "r", encoding="utf-8") as f:
            assert f.read() == content
    finally:
        os.remove(filepath)

    # Test with suffix
    filepath = write_temp_file("content", suffix="md")
    try:
        assert filepath.endswith(".md")
    finally:
        os.remove(filepath)


def test_pipe_editor_returns_edited_text():
    seen = {}

    def fake_editor(command):
        filepath = command[-1]
        seen["path"] = filepath
        with open(filepath, "r", encoding="utf-8") as f:
            seen["initial"] = f.read()
        with open(filepath, "a", encoding="utf-8") as f:
            f.write("edited\n")
        return MagicMock(returncode=0)

    with patch("subprocess.run", side_effect=fake_editor) as mock_run:
        result = pipe_editor("initial\n", suffix="md", editor="myeditor --wait")

    assert result == "initial\nedited\n"
    assert seen["initial"] == "initial\n"
    assert mock_run.call_args.args[0][:2] == ["myeditor", "--wait"]
    assert not os.path.exists(seen["path"])


def test_pipe_editor_launch_failure_removes_temp_file():
    with patch("subprocess.run", side_effect=FileNotFoundError("no such editor")) as mock_run:
        with pytest.raises(EditorLaunchFailure) as cm:
            pipe_editor("buffer", editor="missing-editor")

    filepath = mock_run.call_args.args[0][-1]
    assert not os.path.exists(filepath)
    assert "missing-editor" in str(cm.value)


def test_pipe_editor_nonzero_exit():
    with patch("subprocess.run", return_value=MagicMock(returncode=1)) as mock_run:
        with pytest.raises(EditorLaunchFailure) as cm:
            pipe_editor("buffer", editor="vi")

    assert "status 1" in str(cm.value)
    assert not os.path.exists(mock_run.call_args.args[0][-1])


def test_pipe_editor_interrupted_removes_temp_file():
    with patch("subprocess.run", side_effect=KeyboardInterrupt) as mock_run:
        with pytest.raises(KeyboardInterrupt):
            pipe_editor("buffer", editor="vi")

    assert not os.path.exists(mock_run.call_args.args[0][-1])
