"""Invocation capabilities for review agents.

An invoker is an async callable ``(agent_id, pass_index) -> str`` returning
one pass's review text. This module provides implementations for testing
(mock, failure simulation), offline runs (replay of recorded outputs) and
production (Claude Agent SDK).

IMPORTANT: The production invoker uses claude_agent_sdk.query(), which
authenticates through the Claude CLI login rather than API keys.
"""

from __future__ import annotations

import asyncio
import logging
import os
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Mapping, Sequence

import psutil

from .exceptions import InvocationError

logger = logging.getLogger(__name__)

AGENT_FILE_SUFFIXES = (".agent.md", ".md")


class BaseInvoker(ABC):
    """Abstract base class for invokers.

    Subclasses implement ``_invoke``; calling the instance records nothing
    extra and simply delegates.
    """

    @abstractmethod
    async def _invoke(self, agent_id: str, pass_index: int) -> str:
        """Produce the review text for one agent pass."""
        ...

    async def __call__(self, agent_id: str, pass_index: int) -> str:
        return await self._invoke(agent_id, pass_index)


class MockInvoker(BaseInvoker):
    """Mock invoker for testing.

    Returns canned responses per agent. A list of responses is indexed by
    pass number (the last entry repeats for later passes).
    """

    def __init__(
        self,
        responses: Mapping[str, str | Sequence[str]] | None = None,
        default_response: str = "No findings.",
        delay_seconds: float = 0.0,
    ) -> None:
        """Initialize the mock invoker.

        Args:
            responses: Agent id to response, or to per-pass responses.
            default_response: Fallback for agents without a response.
            delay_seconds: Simulated latency per call.
        """
        self.responses = dict(responses or {})
        self.default_response = default_response
        self.delay_seconds = delay_seconds
        self.call_history: list[tuple[str, int]] = []

    async def _invoke(self, agent_id: str, pass_index: int) -> str:
        self.call_history.append((agent_id, pass_index))
        if self.delay_seconds > 0:
            await asyncio.sleep(self.delay_seconds)

        response = self.responses.get(agent_id, self.default_response)
        if isinstance(response, str):
            return response
        if not response:
            return self.default_response
        return response[min(pass_index, len(response)) - 1]

    def get_call_count(self) -> int:
        """Return the number of invocations made."""
        return len(self.call_history)

    def reset(self) -> None:
        """Reset call history for fresh test runs."""
        self.call_history.clear()


class FailureSimulator(BaseInvoker):
    """Simulates completion-service failures for retry and breaker testing.

    Failure types:
    - timeout: the call never answers within the task timeout
    - rate_limit: HTTP 429 rate limiting
    - server_error: HTTP 503 service unavailable
    - connection_reset: connection reset by peer
    - unauthorized: HTTP 401 authentication failure (fatal)
    - malformed: malformed request (fatal)
    - empty: blank response text

    The first ``failures`` calls fail with ``failure_type``; later calls
    return ``recovery_response``. With ``failures=None`` every call fails.
    """

    FAILURE_TYPES = (
        "timeout",
        "rate_limit",
        "server_error",
        "connection_reset",
        "unauthorized",
        "malformed",
        "empty",
    )

    def __init__(
        self,
        failure_type: str,
        failures: int | None = 1,
        recovery_response: str = "No findings.",
        hang_seconds: float = 3600.0,
    ) -> None:
        """Initialize the failure simulator.

        Args:
            failure_type: One of FAILURE_TYPES.
            failures: Number of failing calls before recovery; None never recovers.
            recovery_response: Response returned once recovered.
            hang_seconds: How long a simulated "timeout" call sleeps.

        Raises:
            ValueError: If ``failure_type`` is unknown.
        """
        if failure_type not in self.FAILURE_TYPES:
            raise ValueError(f"Unknown failure_type: {failure_type}")
        self.failure_type = failure_type
        self.failures = failures
        self.recovery_response = recovery_response
        self.hang_seconds = hang_seconds
        self.call_count = 0
        self.failures_raised = 0

    async def _invoke(self, agent_id: str, pass_index: int) -> str:
        self.call_count += 1
        if self.failures is not None and self.failures_raised >= self.failures:
            return self.recovery_response

        self.failures_raised += 1
        label = f"{agent_id}#{pass_index}"

        if self.failure_type == "timeout":
            await asyncio.sleep(self.hang_seconds)
            raise TimeoutError(f"Simulated timeout for {label}")
        elif self.failure_type == "rate_limit":
            raise InvocationError("HTTP 429: rate limit exceeded, too many requests")
        elif self.failure_type == "server_error":
            raise InvocationError("HTTP 503: service temporarily unavailable")
        elif self.failure_type == "connection_reset":
            raise ConnectionResetError(f"Connection reset by peer while reviewing {label}")
        elif self.failure_type == "unauthorized":
            raise InvocationError("HTTP 401 Unauthorized: invalid token")
        elif self.failure_type == "malformed":
            raise InvocationError("Malformed request: missing required parameter 'prompt'")
        return ""


class ReplayInvoker(BaseInvoker):
    """Replays recorded review outputs from a directory.

    Looks up ``<directory>/<agent_id>/pass-<n>.md`` first, then falls back
    to ``<directory>/<agent_id>.md`` for every pass.
    """

    def __init__(self, directory: Path) -> None:
        self.directory = directory

    def resolve(self, agent_id: str, pass_index: int) -> Path | None:
        """Return the recorded output file for a pass, if any."""
        candidates = [
            self.directory / agent_id / f"pass-{pass_index}.md",
            self.directory / f"{agent_id}.md",
        ]
        for candidate in candidates:
            if candidate.is_file():
                return candidate
        return None

    async def _invoke(self, agent_id: str, pass_index: int) -> str:
        path = self.resolve(agent_id, pass_index)
        if path is None:
            raise InvocationError(f"No recorded output for agent {agent_id} pass {pass_index}")
        logger.debug("Replaying %s for %s#%d", path, agent_id, pass_index)
        return await asyncio.to_thread(path.read_text, encoding="utf-8")


def build_review_prompt(instructions: str, target: str, pass_index: int) -> str:
    """Compose the prompt for one agent pass."""
    return (
        f"{instructions.strip()}\n\n"
        f"## Review target\n\n{target}\n\n"
        f"This is review pass {pass_index}. Report each finding as a numbered "
        "'### N. Title' heading followed by a table with Priority, Location and "
        "Summary rows. If there is nothing to report, answer exactly 'No findings.'"
    )


class ClaudeAgentSDKInvoker(BaseInvoker):
    """Claude Agent SDK invoker for production use.

    Uses claude_agent_sdk.query() with the CLI's login session. Each agent's
    instructions are combined with the review target into one prompt.
    """

    DEFAULT_SYSTEM_PROMPT = (
        "You are a meticulous code reviewer. Report concrete, actionable findings "
        "in markdown. Do not include your reasoning, only the findings."
    )

    def __init__(
        self,
        instructions: Mapping[str, str],
        target: str,
        max_turns: int = 1,
        system_prompt: str | None = None,
    ) -> None:
        """Initialize the SDK invoker.

        Args:
            instructions: Agent id to agent instructions.
            target: Repository or directory under review.
            max_turns: Maximum conversation turns per pass.
            system_prompt: Custom system prompt.
        """
        self.instructions = dict(instructions)
        self.target = target
        self.max_turns = max_turns
        self.system_prompt = system_prompt or self.DEFAULT_SYSTEM_PROMPT

    async def _invoke(self, agent_id: str, pass_index: int) -> str:
        """Run one query and return the concatenated assistant text.

        Raises:
            InvocationError: If the SDK is missing, the agent is unknown, or
                the query fails.
        """
        if agent_id not in self.instructions:
            raise InvocationError(f"Missing required instructions for agent {agent_id}")
        prompt = build_review_prompt(self.instructions[agent_id], self.target, pass_index)

        try:
            from claude_agent_sdk import ClaudeAgentOptions, query

            options = ClaudeAgentOptions(
                max_turns=self.max_turns,
                system_prompt=self.system_prompt,
            )

            # The generator must be closed explicitly or the CLI can hang
            response_text = ""
            generator = query(prompt=prompt, options=options)
            try:
                async for message in generator:
                    if type(message).__name__ != "AssistantMessage":
                        continue
                    content = getattr(message, "content", None)
                    if isinstance(content, str):
                        response_text += content
                    elif isinstance(content, list):
                        for block in content:
                            block_text = getattr(block, "text", None)
                            if block_text is not None:
                                response_text += str(block_text)
            finally:
                await generator.aclose()  # type: ignore[attr-defined]

            return response_text

        except ImportError as e:
            raise InvocationError(
                "claude_agent_sdk not installed. Install the 'sdk' extra."
            ) from e
        except Exception as e:
            logger.error("Claude Agent SDK query failed for %s#%d: %s", agent_id, pass_index, e)
            raise InvocationError(f"Query failed: {e}") from e


def cleanup_sdk_child_processes() -> None:
    """Terminate Claude CLI child processes spawned by this process.

    Call this once at program exit, not after each query: parallel queries
    share the same children.
    """
    try:
        parent = psutil.Process(os.getpid())
        claude_procs = [p for p in parent.children(recursive=True) if "claude" in p.name().lower()]
        for proc in claude_procs:
            try:
                logger.debug("Terminating Claude CLI process: %d", proc.pid)
                proc.terminate()
            except psutil.NoSuchProcess:
                pass

        if claude_procs:
            _, alive = psutil.wait_procs(claude_procs, timeout=3)
            for proc in alive:
                try:
                    logger.warning("Force killing Claude CLI process: %d", proc.pid)
                    proc.kill()
                except psutil.NoSuchProcess:
                    pass
    except psutil.Error as e:
        logger.warning("Failed to cleanup child processes: %s", e)


def _agent_id_for(path: Path) -> str | None:
    for suffix in AGENT_FILE_SUFFIXES:
        if path.name.endswith(suffix):
            return path.name[: -len(suffix)]
    return None


def _strip_frontmatter(text: str) -> str:
    if not text.startswith("---"):
        return text
    end = text.find("\n---", 3)
    if end == -1:
        return text
    return text[end + 4 :].lstrip("\n")


def discover_agents(directory: Path) -> dict[str, str]:
    """Load agent instructions from ``*.agent.md`` / ``*.md`` files.

    Args:
        directory: Directory holding one file per agent.

    Returns:
        Agent id to instructions, sorted by agent id.

    Raises:
        FileNotFoundError: If ``directory`` does not exist.
    """
    if not directory.is_dir():
        msg = f"Agents directory not found: {directory}"
        raise FileNotFoundError(msg)

    agents: dict[str, str] = {}
    for path in sorted(directory.iterdir()):
        if not path.is_file():
            continue
        agent_id = _agent_id_for(path)
        if not agent_id or agent_id in agents:
            continue
        agents[agent_id] = _strip_frontmatter(path.read_text(encoding="utf-8")).strip()
    return dict(sorted(agents.items()))
