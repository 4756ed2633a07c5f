"""
Command-line interface for AgentFlow.

Usage:
    agentflow run flow.json --mode mock --scenario "Busy week" --seed 7
    agentflow run flow.json --engine graph --input '{"input": "hello"}'
    agentflow run flow.json --steppable --breakpoint tool-1
    agentflow order flow.json
    agentflow validate flow.json
    agentflow history --dir ~/.agentflow/runs
"""

import argparse
import asyncio
import json
import sys
from pathlib import Path

from pydantic import ValidationError

from agentflow.config import get_history_dir
from agentflow.errors import AgentFlowError
from agentflow.graph.model import FlowDocument
from agentflow.graph.order import build_order
from agentflow.graph.validator import FlowValidator
from agentflow.llm.provider import LLMProvider
from agentflow.observability.logging import configure_logging
from agentflow.runtime.engine import FlowEngine, generate_summary
from agentflow.runtime.runner import PROPERTIES_RESULT, LinearRunner
from agentflow.runtime.steppable import ExecutionStatus, SteppableRunner
from agentflow.schemas.run import Environment, Overrides, RunManifest, RunOptions, Scenario
from agentflow.storage.history import RunHistory


def _load(path: str) -> FlowDocument | None:
    try:
        return FlowDocument.load(path)
    except (OSError, ValidationError, AgentFlowError) as e:
        print(f"Error: cannot load flow {path}: {e}", file=sys.stderr)
        return None


def _make_llm(mode: str) -> LLMProvider:
    if mode == Environment.LIVE:
        from agentflow.llm.litellm import LiteLLMProvider

        return LiteLLMProvider()
    from agentflow.llm.mock import MockLLMProvider

    return MockLLMProvider()


def _run_options(args: argparse.Namespace) -> RunOptions:
    inputs = json.loads(args.input) if args.input else {}
    return RunOptions(
        inputs=inputs,
        scenario=Scenario(name=args.scenario, description=args.scenario) if args.scenario else None,
        overrides=Overrides(seed=args.seed, environment=Environment(args.mode)),
    )


async def _drive_steppable(runner: SteppableRunner) -> RunManifest:
    """Run with a prompt at every pause: step, continue or quit."""
    task = asyncio.create_task(runner.run())
    while not task.done():
        parked = asyncio.create_task(runner.wait_until_parked())
        await asyncio.wait({task, parked}, return_when=asyncio.FIRST_COMPLETED)
        if task.done():
            parked.cancel()
            break
        if runner.execution_state.status != ExecutionStatus.PAUSED:
            continue
        node_id = runner.execution_state.current_node_id
        prompt = f"⏸ paused before {node_id} [s]tep / [c]ontinue / [q]uit: "
        choice = (await asyncio.to_thread(input, prompt)).strip().lower()
        if choice.startswith("q"):
            runner.reset()
        elif choice.startswith("s"):
            await runner.step()
        else:
            await runner.resume()
    return await task


def _print_manifest(manifest: RunManifest, document: FlowDocument) -> None:
    for node in document.nodes:
        if node.id not in manifest.results:
            continue
        result = manifest.results[node.id]
        props = result.get(PROPERTIES_RESULT) if isinstance(result, dict) else None
        if isinstance(props, dict):
            failed = props.get("outputsTab", {}).get("resultType") == "error"
            summary = props.get("executionSummary", "")
        else:
            failed = isinstance(result, dict) and "error" in result
            summary = generate_summary(node, result)
        print(f"{'✗' if failed else '✓'} {node.id}: {summary}")
    print(f"Run {manifest.id} {manifest.status.value} in {manifest.duration}ms")
    if manifest.assertions is not None:
        print(f"Assertions: {'passed' if manifest.assertions.get('passed') else 'FAILED'}")


def cmd_run(args: argparse.Namespace) -> int:
    document = _load(args.flow)
    if document is None:
        return 1
    try:
        options = _run_options(args)
    except (json.JSONDecodeError, ValidationError) as e:
        print(f"Error: invalid --input: {e}", file=sys.stderr)
        return 1

    llm = _make_llm(args.mode)
    history = RunHistory(args.history or get_history_dir())

    async def _run() -> RunManifest:
        if args.engine == "graph":
            return await FlowEngine(document, llm, options, history=history).execute()
        if args.steppable:
            runner = SteppableRunner(document, llm, options, history=history)
            for node_id in args.breakpoint or []:
                runner.toggle_breakpoint(node_id)
            return await _drive_steppable(runner)
        return await LinearRunner(document, llm, options, history=history).run()

    try:
        manifest = asyncio.run(_run())
    except AgentFlowError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    if args.json:
        print(manifest.model_dump_json(indent=2))
    else:
        _print_manifest(manifest, document)
    if manifest.assertions is not None and not manifest.assertions.get("passed"):
        return 1
    return 0


def cmd_order(args: argparse.Namespace) -> int:
    document = _load(args.flow)
    if document is None:
        return 1
    for index, node in enumerate(build_order(document.nodes, document.connections, document.start_node_id)):
        print(f"{index + 1}. {node.id} ({node.kind_key}) {node.title}")
    return 0


def cmd_validate(args: argparse.Namespace) -> int:
    document = _load(args.flow)
    if document is None:
        return 1
    result = FlowValidator().validate(document)
    for error in result.errors:
        print(f"✗ {error}")
    for warning in result.warnings:
        print(f"⚠ {warning}")
    if result.valid:
        print(f"✓ {args.flow} is valid ({len(result.warnings)} warnings)")
        return 0
    return 1


def cmd_history(args: argparse.Namespace) -> int:
    history = RunHistory(args.dir or get_history_dir())
    runs = asyncio.run(history.list_runs(limit=args.limit))
    if not runs:
        print(f"No runs in {history.base_path}")
        return 0
    for run in runs:
        print(
            f"{run.id}  {run.timestamp:%Y-%m-%d %H:%M:%S}  {run.status.value:<9}  "
            f"{run.node_count} nodes  {run.duration}ms"
        )
    return 0


def register_commands(subparsers: argparse._SubParsersAction) -> None:
    run_parser = subparsers.add_parser("run", help="Execute a flow")
    run_parser.add_argument("flow", help="Path to a flow JSON file")
    run_parser.add_argument("--mode", choices=[e.value for e in Environment], default="mock")
    run_parser.add_argument(
        "--engine",
        choices=["properties", "graph"],
        default="properties",
        help="properties: linear Properties Panel runner; graph: executor registry in dependency order",
    )
    run_parser.add_argument("--scenario", help="Scenario description injected into the start node")
    run_parser.add_argument("--seed", type=int, help="Seed for deterministic mocks")
    run_parser.add_argument("--input", help="Run inputs as a JSON object")
    run_parser.add_argument("--steppable", action="store_true", help="Pause at breakpoints for step/continue")
    run_parser.add_argument("--breakpoint", action="append", metavar="NODE_ID", help="Pause before this node")
    run_parser.add_argument("--history", type=Path, help="Directory to save the run manifest in")
    run_parser.add_argument("--json", action="store_true", help="Print the run manifest as JSON")
    run_parser.set_defaults(func=cmd_run)

    order_parser = subparsers.add_parser("order", help="Print the execution order of a flow")
    order_parser.add_argument("flow")
    order_parser.set_defaults(func=cmd_order)

    validate_parser = subparsers.add_parser("validate", help="Validate a flow")
    validate_parser.add_argument("flow")
    validate_parser.set_defaults(func=cmd_validate)

    history_parser = subparsers.add_parser("history", help="List recent runs")
    history_parser.add_argument("--dir", type=Path, help="History directory")
    history_parser.add_argument("--limit", type=int, default=20)
    history_parser.set_defaults(func=cmd_history)


def main():
    parser = argparse.ArgumentParser(
        prog="agentflow",
        description="AgentFlow - run and debug agent workflow graphs",
    )
    parser.add_argument("--log-level", default="WARNING", help="Log level (DEBUG, INFO, WARNING, ...)")
    parser.add_argument("--log-format", default="auto", choices=["auto", "json", "human"])

    subparsers = parser.add_subparsers(dest="command", required=True)
    register_commands(subparsers)

    args = parser.parse_args()
    configure_logging(args.log_level, args.log_format)

    if hasattr(args, "func"):
        sys.exit(args.func(args))


if __name__ == "__main__":
    main()
