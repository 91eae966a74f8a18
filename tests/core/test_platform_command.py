"""Tests for roundsman.core.platform_command module.

Covers:
- Direct argv building for ordinary prompts
- Temp-file spill for prompts beyond the argument limit (POSIX)
- Shell quoting
- Temp file cleanup
"""

import os
from pathlib import Path
from unittest.mock import patch

import roundsman.core.platform_command as pc
from roundsman.core.platform_command import (
    TEMP_FILE_THRESHOLD,
    build_agent_command,
    cleanup_temp_file,
    shell_quote,
)


class TestBuildAgentCommand:
    """Tests for build_agent_command()."""

    def test_prompt_is_last_argument(self) -> None:
        argv, temp_file = build_agent_command("claude", ["-p", "--verbose"], "do it")

        assert argv == ["claude", "-p", "--verbose", "do it"]
        assert temp_file is None

    def test_large_prompt_spills_to_file(self) -> None:
        prompt = "x" * (TEMP_FILE_THRESHOLD + 1)
        with patch.object(pc, "IS_POSIX", True):
            argv, temp_file = build_agent_command("/opt/my agent", ["--model", "a b"], prompt)

        try:
            assert temp_file is not None
            assert Path(temp_file).read_text(encoding="utf-8") == prompt
            assert argv[:2] == ["/bin/sh", "-c"]
            assert argv[2].startswith("exec '/opt/my agent' --model 'a b' ")
            assert f'"$(cat {temp_file})"' in argv[2]
        finally:
            cleanup_temp_file(temp_file)

    def test_large_prompt_stays_inline_off_posix(self) -> None:
        prompt = "y" * (TEMP_FILE_THRESHOLD + 1)
        with patch.object(pc, "IS_POSIX", False):
            argv, temp_file = build_agent_command("claude", [], prompt)

        assert argv == ["claude", prompt]
        assert temp_file is None


class TestShellQuote:
    """Tests for shell_quote()."""

    def test_safe_argument_unquoted(self) -> None:
        assert shell_quote("--output-format") == "--output-format"
        assert shell_quote("/usr/bin/claude") == "/usr/bin/claude"

    def test_spaces_quoted(self) -> None:
        assert shell_quote("a b") == "'a b'"

    def test_single_quote_escaped(self) -> None:
        assert shell_quote("it's") == "'it'\\''s'"

    def test_empty_argument(self) -> None:
        assert shell_quote("") == "''"


class TestCleanupTempFile:
    """Tests for cleanup_temp_file()."""

    def test_removes_file(self, tmp_path: Path) -> None:
        target = tmp_path / "prompt.txt"
        target.write_text("x")

        cleanup_temp_file(str(target))

        assert not target.exists()

    def test_none_and_missing_are_ignored(self, tmp_path: Path) -> None:
        cleanup_temp_file(None)
        cleanup_temp_file(os.fspath(tmp_path / "missing.txt"))
