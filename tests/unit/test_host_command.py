"""Tests for run_host_command using real, harmless processes."""

from __future__ import annotations

import logging
import time

import pytest

from b9forge.core.host_command import (
    EXIT_COMMAND_NOT_FOUND,
    HostCommandTimeout,
    run_host_command,
)


class TestRunHostCommand:
    def test_success(self):
        result = run_host_command(["true"])
        assert result.ok
        assert result.argv == ["true"]

    def test_failure_exit_code(self, caplog):
        with caplog.at_level(logging.ERROR, logger="b9forge.core.host_command"):
            result = run_host_command(["sh", "-c", "echo oops >&2; exit 3"])
        assert result.returncode == 3
        assert result.stderr_text == "oops"
        assert "COMMAND FAILED EXIT CODE: 3" in caplog.text

    def test_captures_stdout_and_stdin(self):
        result = run_host_command(["cat"], stdin=b"hello")
        assert result.stdout == b"hello"

    def test_missing_executable(self):
        result = run_host_command(["/nonexistent/b9forge-tool"])
        assert result.returncode == EXIT_COMMAND_NOT_FOUND
        assert not result.ok

    def test_timeout_kills_process(self, caplog):
        started = time.monotonic()
        with caplog.at_level(logging.ERROR, logger="b9forge.core.host_command"):
            with pytest.raises(HostCommandTimeout) as exc_info:
                run_host_command(["sleep", "30"], timeout=0.2)
        assert time.monotonic() - started < 10
        assert exc_info.value.argv == ["sleep", "30"]
        assert "COMMAND TIMED OUT" in caplog.text

    def test_timeout_factor_extends_limit(self):
        result = run_host_command(["sleep", "0.3"], timeout=0.1, timeout_factor=50)
        assert result.ok

    def test_debug_log_tags_command(self, caplog):
        with caplog.at_level(logging.DEBUG, logger="b9forge.core.host_command"):
            run_host_command(["true"])
        messages = [r.getMessage() for r in caplog.records]
        assert any(m.startswith("COMMAND [") for m in messages)
        assert any(m.startswith("COMMAND FINISHED [") for m in messages)
