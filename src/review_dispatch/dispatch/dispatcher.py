"""Bounded-concurrency dispatcher for (agent, pass) review tasks.

Every task runs under a shared semaphore of ``parallelism`` slots and
through its own RetryExecutor, all executors of one operation class
sharing a single circuit breaker. Task failures and timeouts are captured
as failed ReviewResults; only cancellation of the caller aborts the run.
"""

from __future__ import annotations

import asyncio
import logging
import random
from typing import Awaitable, Callable, Sequence

from ..circuit_breaker import CircuitBreakerRegistry, CircuitOpenError
from ..exceptions import DispatchError, EmptyResponseError, TaskTimeoutError
from ..merger import ResultMerger
from ..models import AgentSpec, DispatchTask, ReviewResult
from ..retry_executor import RetryExecutor
from ..retry_policy import is_retryable_message
from ..sanitize import sanitize_content
from .config import DispatchConfig, DispatchResult, DispatchStats

logger = logging.getLogger(__name__)

RUN_TIMEOUT_MESSAGE = "Review timed out or was cancelled"

Sanitizer = Callable[[str], str | None]


def _failure_message(exc: Exception) -> str:
    if isinstance(exc, (TaskTimeoutError, CircuitOpenError)):
        return str(exc)
    return f"Review failed: {str(exc) or type(exc).__name__}"


class Dispatcher:
    """Run every (agent, pass) task with bounded concurrency and retries.

    Usage:
        dispatcher = Dispatcher(DispatchConfig(parallelism=4, review_passes=2))
        result = await dispatcher.run([AgentSpec("security", invoker)])
        for review in result.results:
            print(review.agent_id, review.success)
    """

    def __init__(
        self,
        config: DispatchConfig | None = None,
        registry: CircuitBreakerRegistry | None = None,
        *,
        sanitizer: Sanitizer | None = sanitize_content,
        is_retryable: Callable[[str | None], bool] = is_retryable_message,
        non_retryable_markers: Sequence[str] = (),
        sleep: Callable[[float], Awaitable[object]] = asyncio.sleep,
        rng: random.Random | None = None,
    ) -> None:
        """Initialize the dispatcher.

        Args:
            config: Dispatch configuration.
            registry: Breaker registry; one is created from ``config`` if omitted.
                Pass a shared registry to keep breaker state across runs.
            sanitizer: Filter applied to every successful pass's content.
            is_retryable: Retryability classifier for failure messages.
            non_retryable_markers: Extra markers that make a failure fatal.
            sleep: Backoff sleep, injectable for tests.
            rng: Random source for backoff jitter.
        """
        self.config = config or DispatchConfig()
        self.registry = registry or CircuitBreakerRegistry(self.config.circuit_configs)
        self.merger = ResultMerger(self.config.similarity_threshold)
        self._sanitizer = sanitizer
        self._is_retryable = is_retryable
        self._non_retryable_markers = tuple(non_retryable_markers)
        self._sleep = sleep
        self._rng = rng

    def build_tasks(self, agents: Sequence[AgentSpec]) -> list[DispatchTask]:
        """Expand agents into (agent, pass) tasks in agent then pass order.

        Raises:
            DispatchError: If no agents are given, an id is blank or
                duplicated, or an agent requests a non-positive pass count.
        """
        if not agents:
            raise DispatchError("No agents to dispatch")

        seen: set[str] = set()
        tasks: list[DispatchTask] = []
        for agent in agents:
            if not agent.agent_id or not agent.agent_id.strip():
                raise DispatchError("Agent id must not be blank")
            if agent.agent_id in seen:
                raise DispatchError(f"Duplicate agent id: {agent.agent_id}")
            seen.add(agent.agent_id)

            passes = agent.passes if agent.passes is not None else self.config.review_passes
            if passes < 1:
                raise DispatchError(f"Agent {agent.agent_id} requests {passes} passes")

            tasks.extend(
                DispatchTask(
                    agent_id=agent.agent_id,
                    pass_index=pass_index,
                    invoke=agent.invoke,
                    timeout_seconds=self.config.task_timeout_seconds,
                )
                for pass_index in range(1, passes + 1)
            )
        return tasks

    async def dispatch(self, agents: Sequence[AgentSpec]) -> list[ReviewResult]:
        """Run all tasks and return the flat per-(agent, pass) results."""
        results, _ = await self._dispatch(self.build_tasks(agents))
        return results

    async def run(self, agents: Sequence[AgentSpec]) -> DispatchResult:
        """Run all tasks, then merge them into one result per agent.

        Returns:
            DispatchResult with pass results, merged results, stats and
            breaker snapshots.

        Raises:
            DispatchError: If the agent list is invalid.
            asyncio.CancelledError: If the caller cancels the run.
        """
        tasks = self.build_tasks(agents)
        pass_results, stats = await self._dispatch(tasks)
        merged = self.merger.merge(pass_results)
        stats.finish()

        logger.info(
            "Dispatch complete: %d/%d tasks succeeded, %d attempts, peak concurrency %d, %.1fs",
            stats.succeeded,
            stats.total_tasks,
            stats.total_attempts,
            stats.peak_concurrency,
            stats.elapsed_seconds,
        )
        return DispatchResult(
            pass_results=pass_results,
            results=merged,
            stats=stats,
            circuits=self.registry.snapshots(),
        )

    async def _dispatch(
        self, tasks: list[DispatchTask]
    ) -> tuple[list[ReviewResult], DispatchStats]:
        stats = DispatchStats(total_tasks=len(tasks))
        semaphore = asyncio.Semaphore(self.config.parallelism)
        agent_count = len({t.agent_id for t in tasks})
        logger.info(
            "Dispatching %d tasks for %d agents (parallelism=%d)",
            len(tasks),
            agent_count,
            self.config.parallelism,
        )

        # Insertion order is (agent, pass) order, which fixes the output order
        running: dict[asyncio.Task[ReviewResult], DispatchTask] = {
            asyncio.create_task(self._run_task(task, semaphore, stats), name=task.label): task
            for task in tasks
        }

        try:
            _, pending = await asyncio.wait(running, timeout=self.config.run_timeout_seconds)
        except asyncio.CancelledError:
            logger.warning("Dispatch cancelled; cancelling %d tasks", len(running))
            for handle in running:
                handle.cancel()
            await asyncio.gather(*running, return_exceptions=True)
            raise

        if pending:
            logger.warning(
                "Run timeout of %ss reached; cancelling %d unfinished tasks",
                self.config.run_timeout_seconds,
                len(pending),
            )
            for handle in pending:
                handle.cancel()
            await asyncio.gather(*pending, return_exceptions=True)

        results: list[ReviewResult] = []
        for handle, task in running.items():
            if handle.cancelled():
                result = ReviewResult.failed(task.agent_id, RUN_TIMEOUT_MESSAGE, task.pass_index)
                stats.record(result)
                stats.timed_out += 1
            elif handle.exception() is not None:
                exc = handle.exception()
                logger.error("Task %s raised unexpectedly: %s", task.label, exc)
                result = ReviewResult.failed(
                    task.agent_id, f"Review failed: {exc}", task.pass_index
                )
                stats.record(result)
            else:
                result = handle.result()
            results.append(result)
        return results, stats

    async def _run_task(
        self, task: DispatchTask, semaphore: asyncio.Semaphore, stats: DispatchStats
    ) -> ReviewResult:
        async with semaphore:
            stats.task_started()
            try:
                result = await self._execute(task, stats)
            except Exception as exc:
                logger.exception("Task %s failed outside the retry loop", task.label)
                result = ReviewResult.failed(task.agent_id, _failure_message(exc), task.pass_index)
            finally:
                stats.task_finished()
        stats.record(result)
        return result

    async def _execute(self, task: DispatchTask, stats: DispatchStats) -> ReviewResult:
        operation = self.config.operation_class
        retry = self.config.resilience_for(operation).retry
        executor: RetryExecutor[ReviewResult] = RetryExecutor(
            f"{operation}:{task.label}",
            self.registry.get(operation),
            max_attempts=retry.max_attempts,
            backoff_base_ms=retry.backoff_base_ms,
            backoff_max_ms=retry.backoff_max_ms,
            is_retryable=self._is_retryable,
            sleep=self._sleep,
            rng=self._rng,
        )

        last_timed_out = False

        async def attempt() -> ReviewResult:
            nonlocal last_timed_out
            last_timed_out = False
            try:
                return await self._attempt(task)
            except TaskTimeoutError:
                last_timed_out = True
                raise

        outcome = await executor.execute(
            attempt,
            error_mapper=lambda exc: ReviewResult.failed(
                task.agent_id, _failure_message(exc), task.pass_index
            ),
            is_success=lambda r: r.success,
            error_message=lambda r: r.error_message,
            non_retryable_markers=self._non_retryable_markers,
        )
        if outcome.circuit_open:
            stats.circuit_rejected += 1
        elif not outcome.success and last_timed_out:
            stats.timed_out += 1

        result = outcome.value
        if result is None:
            result = ReviewResult.failed(
                task.agent_id, outcome.error_message or "Review failed", task.pass_index
            )
        return result.with_attempts(outcome.attempts_used)

    async def _attempt(self, task: DispatchTask) -> ReviewResult:
        try:
            content = await asyncio.wait_for(
                task.invoke(task.agent_id, task.pass_index),
                timeout=task.timeout_seconds,
            )
        except asyncio.TimeoutError as exc:
            logger.warning("Task %s timed out after %ss", task.label, task.timeout_seconds)
            raise TaskTimeoutError(task.label, task.timeout_seconds) from exc

        if content is not None and self._sanitizer is not None:
            content = self._sanitizer(content)
        if content is None or not content.strip():
            raise EmptyResponseError(task.agent_id, task.pass_index)
        return ReviewResult.succeeded(task.agent_id, content, task.pass_index)
