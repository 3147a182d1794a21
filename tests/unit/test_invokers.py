"""Tests for invoker implementations and agent discovery."""

from __future__ import annotations

import sys
from pathlib import Path
from unittest.mock import MagicMock, patch

import psutil
import pytest

from review_dispatch.exceptions import InvocationError
from review_dispatch.invokers import (
    ClaudeAgentSDKInvoker,
    FailureSimulator,
    MockInvoker,
    ReplayInvoker,
    build_review_prompt,
    cleanup_sdk_child_processes,
    discover_agents,
)
from review_dispatch.models import Invoker


class TestMockInvoker:
    """Tests for MockInvoker."""

    @pytest.mark.asyncio
    async def test_per_pass_responses_repeat_last(self) -> None:
        invoker = MockInvoker({"security": ["first", "second"]})

        assert await invoker("security", 1) == "first"
        assert await invoker("security", 2) == "second"
        assert await invoker("security", 3) == "second"
        assert await invoker("style", 1) == "No findings."
        assert invoker.get_call_count() == 4
        assert invoker.call_history[0] == ("security", 1)

    @pytest.mark.asyncio
    async def test_reset(self) -> None:
        invoker = MockInvoker()
        await invoker("security", 1)
        invoker.reset()
        assert invoker.get_call_count() == 0

    def test_satisfies_invoker_protocol(self) -> None:
        assert isinstance(MockInvoker(), Invoker)


class TestFailureSimulator:
    """Tests for FailureSimulator."""

    def test_unknown_failure_type(self) -> None:
        with pytest.raises(ValueError, match="Unknown failure_type"):
            FailureSimulator("meteor_strike")

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "failure_type,exc_type,match",
        [
            ("rate_limit", InvocationError, "429"),
            ("server_error", InvocationError, "503"),
            ("connection_reset", ConnectionResetError, "Connection reset"),
            ("unauthorized", InvocationError, "401"),
            ("malformed", InvocationError, "Malformed"),
        ],
    )
    async def test_failure_then_recovery(
        self, failure_type: str, exc_type: type[Exception], match: str
    ) -> None:
        simulator = FailureSimulator(failure_type, failures=1, recovery_response="recovered")

        with pytest.raises(exc_type, match=match):
            await simulator("security", 1)
        assert await simulator("security", 1) == "recovered"
        assert simulator.call_count == 2
        assert simulator.failures_raised == 1

    @pytest.mark.asyncio
    async def test_timeout_hangs_then_raises(self) -> None:
        simulator = FailureSimulator("timeout", hang_seconds=0.01)
        with pytest.raises(TimeoutError):
            await simulator("security", 1)

    @pytest.mark.asyncio
    async def test_empty_response(self) -> None:
        simulator = FailureSimulator("empty", failures=None)
        assert await simulator("security", 1) == ""
        assert await simulator("security", 2) == ""


class TestReplayInvoker:
    """Tests for ReplayInvoker."""

    @pytest.mark.asyncio
    async def test_per_pass_file_preferred(self, tmp_path: Path) -> None:
        (tmp_path / "security").mkdir()
        (tmp_path / "security" / "pass-2.md").write_text("pass two", encoding="utf-8")
        (tmp_path / "security.md").write_text("any pass", encoding="utf-8")
        invoker = ReplayInvoker(tmp_path)

        assert await invoker("security", 2) == "pass two"
        assert await invoker("security", 1) == "any pass"

    @pytest.mark.asyncio
    async def test_missing_recording(self, tmp_path: Path) -> None:
        invoker = ReplayInvoker(tmp_path)
        with pytest.raises(InvocationError, match="No recorded output for agent style pass 1"):
            await invoker("style", 1)


class TestClaudeAgentSDKInvoker:
    """Tests for the SDK invoker's error paths."""

    def test_prompt_contains_instructions_target_and_pass(self) -> None:
        prompt = build_review_prompt("  Check security.  ", "src/", 2)
        assert prompt.startswith("Check security.")
        assert "## Review target\n\nsrc/" in prompt
        assert "review pass 2" in prompt
        assert "No findings." in prompt

    @pytest.mark.asyncio
    async def test_unknown_agent(self) -> None:
        invoker = ClaudeAgentSDKInvoker({"security": "Check security."}, "src/")
        with pytest.raises(InvocationError, match="Missing required instructions"):
            await invoker("style", 1)

    @pytest.mark.asyncio
    async def test_sdk_not_installed(self) -> None:
        invoker = ClaudeAgentSDKInvoker({"security": "Check security."}, "src/")
        with patch.dict(sys.modules, {"claude_agent_sdk": None}):
            with pytest.raises(InvocationError, match="claude_agent_sdk not installed"):
                await invoker("security", 1)

    @pytest.mark.asyncio
    async def test_collects_assistant_text(self) -> None:
        class AssistantMessage:
            def __init__(self, content: object) -> None:
                self.content = content

        class ResultMessage:
            content = "ignored"

        block = MagicMock(text="### 1. Finding")

        async def fake_query(prompt: str, options: object):
            yield AssistantMessage([block])
            yield AssistantMessage("\n\nmore")
            yield ResultMessage()

        sdk = MagicMock()
        sdk.query = fake_query
        invoker = ClaudeAgentSDKInvoker({"security": "Check security."}, "src/")

        with patch.dict(sys.modules, {"claude_agent_sdk": sdk}):
            text = await invoker("security", 1)

        assert text == "### 1. Finding\n\nmore"
        sdk.ClaudeAgentOptions.assert_called_once()

    @pytest.mark.asyncio
    async def test_query_failure_is_wrapped(self) -> None:
        async def failing_query(prompt: str, options: object):
            raise RuntimeError("CLI exited with code 1")
            yield  # pragma: no cover

        sdk = MagicMock()
        sdk.query = failing_query
        invoker = ClaudeAgentSDKInvoker({"security": "Check security."}, "src/")

        with patch.dict(sys.modules, {"claude_agent_sdk": sdk}):
            with pytest.raises(InvocationError, match="Query failed: CLI exited with code 1"):
                await invoker("security", 1)


class TestCleanupSdkChildProcesses:
    """Tests for cleanup_sdk_child_processes()."""

    def test_terminates_claude_children_and_kills_survivors(self) -> None:
        claude = MagicMock(pid=101)
        claude.name.return_value = "claude"
        other = MagicMock(pid=102)
        other.name.return_value = "python"
        parent = MagicMock()
        parent.children.return_value = [claude, other]

        with (
            patch("review_dispatch.invokers.psutil.Process", return_value=parent),
            patch(
                "review_dispatch.invokers.psutil.wait_procs", return_value=([], [claude])
            ) as wait_procs,
        ):
            cleanup_sdk_child_processes()

        claude.terminate.assert_called_once()
        claude.kill.assert_called_once()
        other.terminate.assert_not_called()
        wait_procs.assert_called_once_with([claude], timeout=3)

    def test_psutil_errors_are_logged(self, caplog: pytest.LogCaptureFixture) -> None:
        with patch(
            "review_dispatch.invokers.psutil.Process", side_effect=psutil.AccessDenied()
        ):
            cleanup_sdk_child_processes()
        assert "Failed to cleanup child processes" in caplog.text


class TestDiscoverAgents:
    """Tests for discover_agents()."""

    def test_reads_agent_files_sorted(self, tmp_path: Path) -> None:
        (tmp_path / "style.agent.md").write_text("# Style\nCheck naming.", encoding="utf-8")
        (tmp_path / "security.md").write_text(
            "---\nmodel: default\n---\n# Security\nCheck auth.", encoding="utf-8"
        )
        (tmp_path / "notes.txt").write_text("ignored", encoding="utf-8")
        (tmp_path / "nested").mkdir()

        agents = discover_agents(tmp_path)

        assert list(agents) == ["security", "style"]
        assert agents["security"] == "# Security\nCheck auth."
        assert agents["style"] == "# Style\nCheck naming."

    def test_missing_directory(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError, match="Agents directory not found"):
            discover_agents(tmp_path / "missing")
