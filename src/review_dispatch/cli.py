"""CLI for review dispatch.

Provides command-line interface for running review agents against a target
and inspecting the effective configuration.
"""

from __future__ import annotations

import asyncio
import dataclasses
import json
import logging
import sys
from pathlib import Path

import click

from .config import find_config, load_config, render_config
from .dispatch import DispatchConfig, Dispatcher, DispatchResult
from .exceptions import DispatchError
from .invokers import (
    ClaudeAgentSDKInvoker,
    ReplayInvoker,
    cleanup_sdk_child_processes,
    discover_agents,
)
from .models import AgentSpec, Invoker

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger(__name__)


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging")
def cli(verbose: bool) -> None:
    """Review Dispatch - Resilient multi-pass execution of review agents."""
    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)


def _resolve_config(config_path: Path | None) -> tuple[DispatchConfig, Path | None]:
    """Resolve configuration: explicit --config > discovered file > defaults."""
    path = config_path if config_path is not None else find_config()
    try:
        return load_config(path), path
    except (FileNotFoundError, ValueError) as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(1)


def _validate_positive(name: str, value: int | None) -> None:
    if value is not None and value < 1:
        click.echo(f"Error: {name} must be at least 1", err=True)
        sys.exit(1)


@cli.command()
@click.argument(
    "agents_dir", type=click.Path(exists=True, file_okay=False, path_type=Path)
)
@click.option("--target", "-t", required=True, help="Repository or directory to review")
@click.option(
    "--replay",
    type=click.Path(exists=True, file_okay=False, path_type=Path),
    default=None,
    help="Replay recorded outputs from this directory instead of calling the SDK",
)
@click.option("--passes", type=int, default=None, help="Review passes per agent")
@click.option("--parallelism", "-p", type=int, default=None, help="Max concurrent tasks")
@click.option(
    "--config", "config_path", type=click.Path(path_type=Path), default=None,
    help="Config file (default: nearest .review-dispatch.toml)",
)
@click.option(
    "--output", "-o", type=click.Path(file_okay=False, path_type=Path), default=None,
    help="Write one <agent>.md per merged result to this directory",
)
@click.option("--json", "as_json", is_flag=True, help="Print results as JSON")
def run(
    agents_dir: Path,
    target: str,
    replay: Path | None,
    passes: int | None,
    parallelism: int | None,
    config_path: Path | None,
    output: Path | None,
    as_json: bool,
) -> None:
    """Run every agent in AGENTS_DIR against the target and merge their passes."""
    _validate_positive("--passes", passes)
    _validate_positive("--parallelism", parallelism)

    config, _ = _resolve_config(config_path)
    overrides: dict[str, int] = {}
    if passes is not None:
        overrides["review_passes"] = passes
    if parallelism is not None:
        overrides["parallelism"] = parallelism
    if overrides:
        config = dataclasses.replace(config, **overrides)

    instructions = discover_agents(agents_dir)
    if not instructions:
        click.echo(f"Error: no agent files found in {agents_dir}", err=True)
        sys.exit(1)

    invoker: Invoker
    if replay is not None:
        invoker = ReplayInvoker(replay)
    else:
        invoker = ClaudeAgentSDKInvoker(instructions, target)
    agents = [AgentSpec(agent_id, invoker) for agent_id in instructions]

    click.echo(
        f"Reviewing {target} with {len(agents)} agents "
        f"({config.review_passes} passes, parallelism {config.parallelism})..."
    )
    try:
        result = asyncio.run(Dispatcher(config).run(agents))
    except DispatchError as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(1)
    finally:
        if replay is None:
            cleanup_sdk_child_processes()

    if as_json:
        _print_json(result)
    else:
        _print_results(result)
    if output is not None:
        _write_outputs(result, output)

    if not result.all_succeeded:
        sys.exit(1)


def _print_results(result: DispatchResult) -> None:
    """Print dispatch results to console."""
    click.echo("\n" + "=" * 50)
    click.echo("Review Complete")
    click.echo("=" * 50)
    for review in result.results:
        status = "ok" if review.success else "FAILED"
        detail = "" if review.success else f" - {review.error_message}"
        click.echo(f"  {review.agent_id}: {status} ({review.attempts} attempts){detail}")

    stats = result.stats
    click.echo(
        f"\nTasks: {stats.succeeded}/{stats.total_tasks} succeeded, "
        f"{stats.timed_out} timed out, {stats.circuit_rejected} circuit-rejected, "
        f"peak concurrency {stats.peak_concurrency}, {stats.elapsed_seconds:.1f}s"
    )
    for snap in result.circuits:
        click.echo(
            f"  Circuit {snap.operation}: {snap.state.value} "
            f"({snap.consecutive_failures} consecutive failures)"
        )


def _print_json(result: DispatchResult) -> None:
    payload = {
        "results": [
            {
                "agent_id": r.agent_id,
                "success": r.success,
                "content": r.content,
                "error_message": r.error_message,
                "timestamp": r.timestamp.isoformat(),
                "attempts": r.attempts,
            }
            for r in result.results
        ],
        "stats": result.stats.to_dict(),
        "circuits": [snap.to_dict() for snap in result.circuits],
    }
    click.echo(json.dumps(payload, indent=2))


def _write_outputs(result: DispatchResult, output: Path) -> None:
    """Write each merged result to ``<output>/<agent>.md``."""
    output.mkdir(parents=True, exist_ok=True)
    for review in result.results:
        text = review.content if review.success else f"Review failed: {review.error_message}"
        path = output / f"{review.agent_id}.md"
        path.write_text((text or "") + "\n", encoding="utf-8")
        logger.info("Wrote %s", path)


@cli.command(name="config")
@click.option(
    "--config", "config_path", type=click.Path(path_type=Path), default=None,
    help="Config file (default: nearest .review-dispatch.toml)",
)
def config_command(config_path: Path | None) -> None:
    """Show the effective configuration."""
    config, source = _resolve_config(config_path)
    click.echo(f"# source: {source if source is not None else 'built-in defaults'}")
    click.echo(render_config(config))


@cli.command()
@click.argument(
    "agents_dir", type=click.Path(exists=True, file_okay=False, path_type=Path)
)
def agents(agents_dir: Path) -> None:
    """List the agents defined in AGENTS_DIR."""
    instructions = discover_agents(agents_dir)
    if not instructions:
        click.echo(f"No agent files found in {agents_dir}")
        return
    for agent_id, text in instructions.items():
        first_line = next((line for line in text.splitlines() if line.strip()), "")
        click.echo(f"{agent_id}: {first_line.lstrip('# ').strip()}")


def main() -> None:
    """Entry point for CLI."""
    cli()


if __name__ == "__main__":
    main()
