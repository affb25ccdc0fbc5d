"""
toolmount.cli - Command-Line Interface

Operator commands over the registry and the permission gate.

Usage:
    toolmount primitive list [--category CAT] [--all]
    toolmount primitive get <id-or-name>
    toolmount primitive create definition.json
    toolmount primitive delete <id-or-name>
    toolmount primitive mount|dismount <id-or-name>
    toolmount primitive stats
    toolmount primitive exec <id-or-name> --input '{"cents": 1999}' [--test]
    toolmount mode show|ask|autonomous
    toolmount serve [--host HOST] [--port PORT]
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any

from pydantic import ValidationError as PydanticValidationError
from rich.console import Console
from rich.syntax import Syntax
from rich.table import Table

from toolmount.core.tools.base import (
    ExecutionResult,
    PermissionSettings,
    PrimitiveDefinition,
    PrimitiveSnapshot,
    RegistryStats,
)
from toolmount.exceptions import ToolmountError, ValidationError
from toolmount.services.tool_runtime import ToolRuntime
from toolmount.settings import get_settings

logger = logging.getLogger(__name__)

console = Console()


@asynccontextmanager
async def _open_runtime() -> AsyncIterator[ToolRuntime]:
    """Start a runtime against the configured database for one command."""
    from toolmount.models.database import get_engine, get_sessionmaker

    settings = get_settings()
    engine = get_engine(settings.database_url)
    runtime = ToolRuntime(get_sessionmaker(engine), settings=settings)
    try:
        await runtime.start()
        logger.debug(f"CLI runtime started: {runtime!r}")
        yield runtime
    finally:
        await runtime.shutdown()
        await engine.dispose()


def _parse_json_object(text: str) -> dict[str, Any]:
    """argparse type for --input."""
    try:
        value = json.loads(text)
    except json.JSONDecodeError as e:
        raise argparse.ArgumentTypeError(f"not valid JSON: {e}") from e
    if not isinstance(value, dict):
        raise argparse.ArgumentTypeError("must be a JSON object")
    return value


def load_definition(path: Path) -> PrimitiveDefinition:
    """
    Read a primitive definition from a JSON file.

    A ``handler_file`` key (relative to the definition) may replace an
    inline ``handler``.

    Raises:
        ValidationError: Unreadable file or invalid definition
    """
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        raise ValidationError(f"Cannot read definition {path}: {e}") from e

    if not isinstance(data, dict):
        raise ValidationError(f"Definition {path} must be a JSON object")

    handler_file = data.pop("handler_file", None)
    if handler_file is not None:
        handler_path = path.parent / handler_file
        try:
            data["handler"] = handler_path.read_text(encoding="utf-8")
        except OSError as e:
            raise ValidationError(f"Cannot read handler {handler_path}: {e}") from e

    try:
        return PrimitiveDefinition.model_validate(data)
    except PydanticValidationError as e:
        errors = [f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()]
        raise ValidationError(f"Invalid definition in {path}", errors=errors) from e


# ── Rendering ──


def render_primitives(primitives: list[PrimitiveSnapshot], runtime: ToolRuntime) -> Table:
    table = Table(title=f"Primitives ({len(primitives)})", show_header=True)
    table.add_column("Name", style="cyan")
    table.add_column("Category")
    table.add_column("Tags")
    table.add_column("Mounted")
    table.add_column("Version", justify="right")
    table.add_column("Calls", justify="right")

    for primitive in primitives:
        mounted = runtime.cache.get(primitive.id)
        name = f"{primitive.name} [dim](built-in)[/dim]" if primitive.built_in else primitive.name
        table.add_row(
            name,
            primitive.category or "-",
            ", ".join(primitive.tags) or "-",
            "[green]yes[/green]" if mounted else "[red]no[/red]",
            str(primitive.version),
            str(mounted.invocation_count) if mounted else "-",
        )
    return table


def render_primitive(primitive: PrimitiveSnapshot) -> Table:
    table = Table(title=f"Primitive: {primitive.name}", show_header=True)
    table.add_column("Field", style="cyan")
    table.add_column("Value", style="green")

    table.add_row("ID", str(primitive.id))
    table.add_row("Description", primitive.description)
    table.add_row("Category", primitive.category or "-")
    table.add_row("Tags", ", ".join(primitive.tags) or "-")
    table.add_row("Tier", primitive.tier.value)
    table.add_row("Timeout", f"{primitive.timeout_ms} ms")
    table.add_row("Sandboxed", str(primitive.sandboxed))
    table.add_row("Enabled", str(primitive.enabled))
    table.add_row("Built-in", str(primitive.built_in))
    table.add_row("Version", str(primitive.version))
    table.add_row("Input schema", json.dumps(primitive.input_schema, indent=2))
    return table


def render_stats(stats: RegistryStats) -> Table:
    table = Table(title="Registry Stats", show_header=True)
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="green")

    table.add_row("Total", str(stats.total))
    table.add_row("Mounted", str(stats.mounted))
    for category, count in sorted(stats.by_category.items()):
        table.add_row(f"Category: {category}", str(count))
    for tier, count in stats.by_tier.items():
        table.add_row(f"Tier: {tier}", str(count))
    table.add_row("Executions (24h)", str(stats.recent_executions))
    return table


def render_result(result: ExecutionResult) -> Table:
    table = Table(title=f"Execution: {result.primitive_name}", show_header=True)
    table.add_column("Field", style="cyan")
    table.add_column("Value")

    status = "[green]success[/green]" if result.success else f"[red]{result.outcome.value}[/red]"
    table.add_row("Outcome", status)
    table.add_row("Time", f"{result.execution_time_ms:.1f} ms")
    if result.success:
        table.add_row("Result", json.dumps(result.result, indent=2, default=str))
    else:
        table.add_row("Error", result.error or "-")
    if result.validation_errors:
        table.add_row("Validation errors", "\n".join(result.validation_errors))
    if result.security_warnings:
        warnings = ", ".join(result.security_warnings)
        table.add_row("Security warnings", f"[yellow]{warnings}[/yellow]")
    return table


def render_mode(settings: PermissionSettings) -> Table:
    table = Table(title="Permission Gate", show_header=True)
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="green")

    table.add_row("Mode", settings.mode.value)
    table.add_row("Approval for management tools", str(settings.require_approval_for_management))
    table.add_row("Updated at", settings.updated_at.isoformat() if settings.updated_at else "-")
    table.add_row("Updated by", settings.updated_by or "-")
    return table


# ── primitive commands ──


async def _list_primitives(args: argparse.Namespace) -> None:
    async with _open_runtime() as runtime:
        primitives = await runtime.registry.list(
            category=args.category, enabled_only=not args.all, limit=args.limit
        )
        if not primitives:
            console.print("No primitives.")
            return
        console.print(render_primitives(primitives, runtime))


async def _get_primitive(args: argparse.Namespace) -> None:
    async with _open_runtime() as runtime:
        primitive = await runtime.registry.require(args.primitive)
    console.print(render_primitive(primitive))
    console.print(Syntax(primitive.handler, "python", line_numbers=True))


async def _create_primitive(args: argparse.Namespace) -> None:
    definition = load_definition(args.definition)
    async with _open_runtime() as runtime:
        primitive = await runtime.registry.create(definition)
    console.print(f"[green]Created and mounted[/green] {primitive.name} ({primitive.id})")


async def _delete_primitive(args: argparse.Namespace) -> None:
    async with _open_runtime() as runtime:
        primitive = await runtime.registry.delete(args.primitive)
    console.print(f"Deleted {primitive.name}")


async def _mount_primitive(args: argparse.Namespace) -> None:
    async with _open_runtime() as runtime:
        mounted = await runtime.registry.mount(args.primitive)
    console.print(f"[green]Mounted[/green] {mounted.name}")


async def _dismount_primitive(args: argparse.Namespace) -> None:
    async with _open_runtime() as runtime:
        primitive = await runtime.registry.dismount(args.primitive)
    console.print(f"Dismounted {primitive.name}")


async def _primitive_stats(_args: argparse.Namespace) -> None:
    async with _open_runtime() as runtime:
        stats = await runtime.registry.stats()
    console.print(render_stats(stats))


async def _exec_primitive(args: argparse.Namespace) -> None:
    """Attended execution: the operator running the command is the approver."""
    async with _open_runtime() as runtime:
        if args.test:
            result = await runtime.test(args.primitive, args.input, user_id="cli")
        else:
            result = await runtime.execute(args.primitive, args.input, user_id="cli")
    console.print(render_result(result))
    if not result.success:
        sys.exit(2)


# ── mode commands ──


async def _show_mode(_args: argparse.Namespace) -> None:
    async with _open_runtime() as runtime:
        settings = runtime.gate.settings
    console.print(render_mode(settings))


async def _set_ask_mode(_args: argparse.Namespace) -> None:
    async with _open_runtime() as runtime:
        settings = await runtime.gate.disable_autonomous(updated_by="cli")
    console.print(render_mode(settings))


async def _set_autonomous_mode(_args: argparse.Namespace) -> None:
    async with _open_runtime() as runtime:
        settings = await runtime.gate.enable_autonomous(updated_by="cli")
    console.print("[yellow]Autonomous mode: tool calls no longer ask for approval.[/yellow]")
    console.print(render_mode(settings))


def _serve(args: argparse.Namespace) -> None:
    """Run the API server (blocks until interrupted)."""
    import uvicorn

    settings = get_settings()
    host = args.host or settings.api_host
    port = args.port or settings.api_port
    console.print(f"[bold]toolmount API[/bold] on http://{host}:{port}/api/docs")
    uvicorn.run(
        "toolmount.api.main:app",
        host=host,
        port=port,
        log_level=settings.log_level.lower(),
    )


def build_parser() -> argparse.ArgumentParser:
    """Build the CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="toolmount",
        description="toolmount - Dynamic tool registry and sandboxed execution runtime",
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # ── primitive command group ──
    prim_parser = subparsers.add_parser("primitive", help="Manage primitives")
    prim_sub = prim_parser.add_subparsers(dest="action", help="Primitive actions")

    # list
    list_p = prim_sub.add_parser("list", help="List primitives")
    list_p.add_argument("--category", default=None, help="Filter by category")
    list_p.add_argument("--all", action="store_true", help="Include dismounted primitives")
    list_p.add_argument("--limit", type=int, default=100, help="Max primitives")
    list_p.set_defaults(func=_list_primitives)

    # get
    get_p = prim_sub.add_parser("get", help="Show a primitive and its handler")
    get_p.add_argument("primitive", help="Primitive id or name")
    get_p.set_defaults(func=_get_primitive)

    # create
    create_p = prim_sub.add_parser("create", help="Create a primitive from a JSON definition")
    create_p.add_argument("definition", type=Path, help="Path to the definition file")
    create_p.set_defaults(func=_create_primitive)

    # delete
    delete_p = prim_sub.add_parser("delete", help="Delete a primitive")
    delete_p.add_argument("primitive", help="Primitive id or name")
    delete_p.set_defaults(func=_delete_primitive)

    # mount / dismount
    mount_p = prim_sub.add_parser("mount", help="Mount a primitive")
    mount_p.add_argument("primitive", help="Primitive id or name")
    mount_p.set_defaults(func=_mount_primitive)

    dismount_p = prim_sub.add_parser("dismount", help="Dismount a primitive")
    dismount_p.add_argument("primitive", help="Primitive id or name")
    dismount_p.set_defaults(func=_dismount_primitive)

    # stats
    stats_p = prim_sub.add_parser("stats", help="Registry statistics")
    stats_p.set_defaults(func=_primitive_stats)

    # exec
    exec_p = prim_sub.add_parser("exec", help="Execute a primitive")
    exec_p.add_argument("primitive", help="Primitive id or name")
    exec_p.add_argument(
        "--input", type=_parse_json_object, default={}, help="Arguments as a JSON object"
    )
    exec_p.add_argument(
        "--test", action="store_true", help="Test run (works for dismounted primitives)"
    )
    exec_p.set_defaults(func=_exec_primitive)

    # ── mode command group ──
    mode_parser = subparsers.add_parser("mode", help="Show or change the permission mode")
    mode_sub = mode_parser.add_subparsers(dest="action", help="Mode actions")

    show_p = mode_sub.add_parser("show", help="Show the current mode")
    show_p.set_defaults(func=_show_mode)

    ask_p = mode_sub.add_parser("ask", help="Require approval for gated calls")
    ask_p.set_defaults(func=_set_ask_mode)

    auto_p = mode_sub.add_parser("autonomous", help="Let gated calls proceed without approval")
    auto_p.set_defaults(func=_set_autonomous_mode)

    # ── server ──
    serve_p = subparsers.add_parser("serve", help="Run the HTTP API server")
    serve_p.add_argument("--host", default=None, help="Bind address (default: settings)")
    serve_p.add_argument("--port", type=int, default=None, help="Port (default: settings)")
    serve_p.set_defaults(func=_serve)

    return parser


def main(argv: list[str] | None = None) -> None:
    """CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not hasattr(args, "func"):
        parser.print_help()
        sys.exit(1)

    get_settings().configure_logging()

    if args.func is _serve:
        _serve(args)
        return

    try:
        asyncio.run(args.func(args))
    except ToolmountError as e:
        console.print(f"[red]Error:[/red] {e}")
        if isinstance(e, ValidationError) and len(e.errors) > 1:
            for error in e.errors:
                console.print(f"  - {error}")
        sys.exit(1)


if __name__ == "__main__":
    main()
