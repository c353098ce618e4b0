# cli.py
from __future__ import annotations

import sys
from pathlib import Path

import click

from . import settings
from .errors import ConfigurationError, TriggerDispatchError
from .loader import load_pipeline
from .model import PipelineStatus, WorkerDescriptor
from .plan import build_plan, partition_segments
from .pool import parse_worker
from .runner import resolve_context, run_pipeline, write_report
from .triggers import MemoryTriggerQueue, RedisTriggerQueue
from .ui.console import Console, get_console, set_console

EXIT_FAILED = 1
EXIT_CONFIG = 2


def find_pipeline_files(root: Path = Path(".")) -> list[Path]:
    """Return the well-known pipeline locations that exist under `root`."""
    return [root / name for name in settings.PIPELINE_CANDIDATES if (root / name).exists()]


def discover_pipeline(pipeline_arg: str | None) -> Path:
    """
    Discover the pipeline file from the argument or the default locations.

    Raises:
        SystemExit: If no pipeline (or more than one) can be found
    """
    console = get_console()

    if pipeline_arg:
        path = Path(pipeline_arg)
        if not path.exists():
            console.print_error(
                "Pipeline file not found",
                f"Could not find pipeline file: {pipeline_arg}",
                suggestion="Specify a different path:\n  barrierci run --pipeline path/to/pipeline.yml",
            )
            sys.exit(EXIT_CONFIG)
        return path

    found = find_pipeline_files()
    if not found:
        console.print_error(
            "No pipeline file found",
            "Could not find any pipeline files.",
            details=["Looked for:"] + [f"  {name}" for name in settings.PIPELINE_CANDIDATES],
            suggestion="Specify a pipeline explicitly:\n  barrierci run --pipeline my_pipeline.yml",
        )
        sys.exit(EXIT_CONFIG)
    if len(found) > 1:
        console.print_error(
            "Multiple pipeline files found",
            "Found multiple pipeline files. Please specify which one to use:",
            details=[f"  {f}" for f in found],
            suggestion=f"  barrierci run --pipeline {found[0]}",
        )
        sys.exit(EXIT_CONFIG)
    return found[0]


def _load_or_exit(path: Path):
    console = get_console()
    try:
        return load_pipeline(path)
    except ConfigurationError as e:
        console.print_error("Invalid pipeline", f"{path}: {e.message}", details=[f"{k}={v}" for k, v in e.details.items()])
        sys.exit(EXIT_CONFIG)


def _workers_from(agent_specs: tuple[str, ...]) -> list[WorkerDescriptor]:
    if not agent_specs:
        return [WorkerDescriptor(id="local")]
    return [parse_worker(s) for s in agent_specs]


@click.group()
@click.option(
    "--debug",
    is_flag=True,
    default=False,
    help="Enable debug mode (show stack traces and full step output)",
)
@click.pass_context
def cli(ctx, debug):
    """barrierci: run buildkite-style step pipelines with wait barriers and triggers."""
    console = Console(debug=debug)
    set_console(console)
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug


@cli.command()
@click.option("--pipeline", "pipeline_arg", default=None, help="Pipeline file (.yml/.yaml/.py)")
@click.option("--branch", default=None, help="Branch name (defaults to $BARRIERCI_BRANCH or the git checkout)")
@click.option("--commit", default=None, help="Commit ref (defaults to $BARRIERCI_COMMIT or git HEAD)")
@click.option(
    "--agent",
    "agents",
    multiple=True,
    help="Worker spec, repeatable: 'id:key=value,key=value' or 'key=value'. Default: one untagged local agent.",
)
@click.option("--cwd", default=".", show_default=True, help="Working directory for step commands")
@click.option("--redis-url", default=None, help="Redis URL for trigger requests (defaults to $BARRIERCI_REDIS_URL)")
@click.option("--trigger-queue", default=None, help="Redis list receiving trigger requests")
@click.option("--json", "json_path", default=None, help="Write a JSON report to this path")
@click.pass_context
def run(ctx, pipeline_arg, branch, commit, agents, cwd, redis_url, trigger_queue, json_path):
    """Run a pipeline."""
    console = get_console()
    path = discover_pipeline(pipeline_arg)
    spec = _load_or_exit(path)

    try:
        context = resolve_context(branch, commit, cwd=cwd)
        workers = _workers_from(agents)

        redis_url = redis_url or settings.REDIS_URL
        if redis_url:
            queue = RedisTriggerQueue(redis_url, trigger_queue)
        else:
            queue = MemoryTriggerQueue()
            if spec.triggers:
                console.print_debug("no Redis URL configured; trigger requests are only recorded locally")

        console.print_run_started(
            pipeline=str(path),
            branch=context.branch,
            commit=context.commit,
            node_count=len(spec),
            worker_count=len(workers),
        )
        report = run_pipeline(spec, context, workers, cwd=cwd, trigger_queue=queue, console=console)

        if json_path:
            out = write_report(report, json_path)
            console.print_info(f"Report written to {out}")

    except ConfigurationError as e:
        console.print_error("Invalid configuration", e.message, details=[f"{k}={v}" for k, v in e.details.items()])
        sys.exit(EXIT_CONFIG)
    except TriggerDispatchError as e:
        console.print_error("Trigger queue unavailable", str(e))
        sys.exit(EXIT_CONFIG)
    except KeyboardInterrupt:
        console.print_info("\nInterrupted by user")
        sys.exit(130)

    if report.status is PipelineStatus.FAILED:
        sys.exit(EXIT_FAILED)


@cli.command()
@click.option("--pipeline", "pipeline_arg", default=None, help="Pipeline file (.yml/.yaml/.py)")
@click.option("--branch", default=None, help="Branch name (defaults to $BARRIERCI_BRANCH or the git checkout)")
@click.pass_context
def plan(ctx, pipeline_arg, branch):
    """Show which steps would run on a branch, segment by segment."""
    console = get_console()
    path = discover_pipeline(pipeline_arg)
    spec = _load_or_exit(path)

    try:
        context = resolve_context(branch, "HEAD")
    except ConfigurationError as e:
        console.print_error("Invalid configuration", e.message)
        sys.exit(EXIT_CONFIG)

    planned = build_plan(spec, context)
    for seg in partition_segments(spec):
        if not seg.indices:
            continue
        console.print_header(f"Segment {seg.number}")
        for node in (p for p in planned if p.segment == seg.number):
            if node.runs:
                console.print_plan_node(node.label, node.reason)
            else:
                console.print_plan_node_skipped(node.label, node.reason)
        if seg.closed_by is not None:
            suffix = " (continue on failure)" if seg.closed_by.continue_on_failure else ""
            console.print_info(f"  -- wait{suffix} --")


@cli.command()
@click.option("--pipeline", "pipeline_arg", default=None, help="Pipeline file (.yml/.yaml/.py)")
def validate(pipeline_arg):
    """Parse a pipeline and report problems without running anything."""
    console = get_console()
    path = discover_pipeline(pipeline_arg)
    spec = _load_or_exit(path)
    segments = [s for s in partition_segments(spec) if s.indices]
    console.print_info(
        f"{path}: OK ({len(spec.command_steps)} command steps, "
        f"{len(spec.triggers)} triggers, {len(segments)} segments)"
    )


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
