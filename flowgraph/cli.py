"""
Command-line interface for flowgraph.

Usage:
    flowgraph run workflow.json --input '{"platform": "twitter"}'
    flowgraph run workflow.json --storage ./runs --json
    flowgraph validate workflow.json
    flowgraph order workflow.json
"""

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import Any

from pydantic import ValidationError


def load_workflow(path: str | Path):
    """Read and parse a workflow JSON document."""
    from flowgraph.graph.workflow import WorkflowConfig

    with open(path, encoding="utf-8-sig") as f:
        return WorkflowConfig.model_validate(json.load(f))


def _load_or_report(path: str):
    try:
        return load_workflow(path)
    except FileNotFoundError:
        print(f"Workflow file not found: {path}", file=sys.stderr)
    except json.JSONDecodeError as e:
        print(f"Workflow file is not valid JSON: {e}", file=sys.stderr)
    except ValidationError as e:
        print(f"Workflow document is malformed:\n{e}", file=sys.stderr)
    return None


def cmd_run(args: argparse.Namespace) -> int:
    from flowgraph.config import EngineConfig
    from flowgraph.graph.engine import WorkflowEngine
    from flowgraph.observability import configure_logging
    from flowgraph.runtime.execution_store import FileExecutionStore

    config = EngineConfig()
    if args.log_level:
        config.log_level = args.log_level.upper()
    configure_logging(level=config.log_level, format=config.log_format)

    workflow = _load_or_report(args.workflow)
    if workflow is None:
        return 1

    initial_input: dict[str, Any] = {}
    if args.input:
        try:
            initial_input = json.loads(args.input)
        except json.JSONDecodeError as e:
            print(f"--input is not valid JSON: {e}", file=sys.stderr)
            return 1
        if not isinstance(initial_input, dict):
            print("--input must be a JSON object", file=sys.stderr)
            return 1

    storage = args.storage or config.storage_path
    store = FileExecutionStore(Path(storage).expanduser()) if storage else None

    engine = WorkflowEngine(workflow, store=store, config=config)
    result = asyncio.run(engine.execute(initial_input))

    if args.json:
        print(
            json.dumps(
                {
                    "executionId": result.execution_id,
                    "status": str(result.status),
                    "output": result.output,
                    "error": result.error,
                    "failedNodeId": result.failed_node_id,
                    "durationMs": result.duration_ms,
                    "totalTokens": result.total_tokens,
                    "path": result.path,
                    "skippedNodeIds": result.skipped_node_ids,
                    "errors": result.errors,
                },
                ensure_ascii=False,
                indent=2,
                default=str,
            )
        )
    elif result.success:
        print(f"Execution {result.execution_id} completed in {result.duration_ms}ms")
        print(f"Path: {' -> '.join(result.path)}")
        if result.skipped_node_ids:
            print(f"Skipped: {', '.join(result.skipped_node_ids)}")
        if result.output is not None:
            content = result.output
            if isinstance(content, dict) and "content" in content:
                content = content["content"]
            print(content if isinstance(content, str) else json.dumps(content, indent=2))
    else:
        print(f"Execution {result.execution_id} failed: {result.error}", file=sys.stderr)

    return 0 if result.success else 1


def cmd_validate(args: argparse.Namespace) -> int:
    from flowgraph.graph.errors import ExecutionOrderError
    from flowgraph.graph.order import get_execution_order

    workflow = _load_or_report(args.workflow)
    if workflow is None:
        return 1

    errors = workflow.validate()
    if not errors:
        try:
            get_execution_order(workflow.nodes, workflow.edges)
        except ExecutionOrderError as e:
            errors.append(str(e))

    if errors:
        print(f"✗ {args.workflow} is invalid:")
        for error in errors:
            print(f"  • {error}")
        return 1

    print(
        f"✓ {args.workflow} is valid "
        f"({len(workflow.nodes)} nodes, {len(workflow.edges)} edges)"
    )
    return 0


def cmd_order(args: argparse.Namespace) -> int:
    from flowgraph.graph.errors import ExecutionOrderError
    from flowgraph.graph.order import get_execution_order

    workflow = _load_or_report(args.workflow)
    if workflow is None:
        return 1

    try:
        order = get_execution_order(workflow.nodes, workflow.edges)
    except ExecutionOrderError as e:
        print(str(e), file=sys.stderr)
        return 1

    for position, node in enumerate(order, start=1):
        label = f" ({node.name})" if node.name else ""
        print(f"{position:>3}. {node.id} [{node.type}]{label}")
    return 0


def register_commands(subparsers: argparse._SubParsersAction) -> None:
    run_parser = subparsers.add_parser("run", help="Execute a workflow")
    run_parser.add_argument("workflow", help="Path to a workflow JSON document")
    run_parser.add_argument("--input", "-i", help="Initial input as a JSON object")
    run_parser.add_argument("--storage", help="Directory for execution records")
    run_parser.add_argument(
        "--log-level", choices=["DEBUG", "INFO", "WARNING", "ERROR"], type=str.upper
    )
    run_parser.add_argument("--json", action="store_true", help="Print the result as JSON")
    run_parser.set_defaults(func=cmd_run)

    validate_parser = subparsers.add_parser("validate", help="Check a workflow's structure")
    validate_parser.add_argument("workflow", help="Path to a workflow JSON document")
    validate_parser.set_defaults(func=cmd_validate)

    order_parser = subparsers.add_parser("order", help="Print the execution order")
    order_parser.add_argument("workflow", help="Path to a workflow JSON document")
    order_parser.set_defaults(func=cmd_order)


def main(argv: list[str] | None = None):
    parser = argparse.ArgumentParser(
        prog="flowgraph",
        description="flowgraph - Run node-and-edge workflows",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)
    register_commands(subparsers)

    args = parser.parse_args(argv)

    if hasattr(args, "func"):
        sys.exit(args.func(args))


if __name__ == "__main__":
    main()
