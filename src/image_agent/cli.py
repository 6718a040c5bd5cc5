"""
Command-line interface for the image agent.
"""

from __future__ import annotations

import argparse
import asyncio
import base64
import json
import mimetypes
import sys
from pathlib import Path

from rich.console import Console
from rich.table import Table

from image_agent.config import RuntimeSettings
from image_agent.errors import AgentError
from image_agent.events import CONTENT_DELTA, DONE, ERROR, TOOL_RESULT, TOOL_START
from image_agent.logging import setup_logging
from image_agent.service import AgentService

console = Console()


def main() -> None:
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Conversational image agent CLI",
        prog="image-agent",
    )

    # Global options
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose output (debug logging)",
    )
    parser.add_argument(
        "-c",
        "--config",
        help="Settings YAML file (defaults to environment variables)",
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # Tools command
    tools_parser = subparsers.add_parser("tools", help="List available tools")
    tools_parser.add_argument("--category", help="Only show tools in this category")
    tools_parser.add_argument(
        "--json",
        action="store_true",
        help="Output as JSON",
    )

    # Chat command
    chat_parser = subparsers.add_parser("chat", help="Send one message to a new session")
    chat_parser.add_argument("message", help="Message text")
    chat_parser.add_argument(
        "-i",
        "--image",
        action="append",
        dest="images",
        help="Image file or URL to attach (repeatable)",
    )
    chat_parser.add_argument("-u", "--user", default="cli", help="User id")
    chat_parser.add_argument("-m", "--model", help="Model override")
    chat_parser.add_argument("--max-steps", type=int, help="Step budget for the session")
    chat_parser.add_argument(
        "--no-stream",
        action="store_true",
        help="Wait for the final result instead of streaming",
    )

    # Serve command
    serve_parser = subparsers.add_parser("serve", help="Run the HTTP API server")
    serve_parser.add_argument("--host", default="127.0.0.1", help="Bind address")
    serve_parser.add_argument("-p", "--port", type=int, default=8080, help="Port")

    args = parser.parse_args()

    settings = _load_settings(args.config)

    # Setup logging based on verbosity
    if getattr(args, "verbose", False):
        setup_logging("DEBUG")
    else:
        setup_logging(settings.log_level)

    if args.command == "tools":
        cmd_tools(args, settings)
    elif args.command == "chat":
        sys.exit(asyncio.run(cmd_chat(args, settings)))
    elif args.command == "serve":
        cmd_serve(args, settings)
    else:
        parser.print_help()


def _load_settings(path: str | None) -> RuntimeSettings:
    try:
        if path:
            return RuntimeSettings.from_yaml(Path(path))
        return RuntimeSettings.from_env()
    except (OSError, AgentError) as e:
        console.print(f"[red]Failed to load settings: {e}[/red]")
        sys.exit(1)


def _image_arg(value: str) -> str:
    """Pass URLs through; read local files into data URLs."""
    if value.startswith(("http://", "https://", "data:")):
        return value
    path = Path(value)
    if not path.is_file():
        console.print(f"[red]Image not found: {value}[/red]")
        sys.exit(1)
    mime = mimetypes.guess_type(path.name)[0] or "image/png"
    return f"data:{mime};base64,{base64.b64encode(path.read_bytes()).decode()}"


def cmd_tools(args: argparse.Namespace, settings: RuntimeSettings) -> None:
    """List available tools."""
    service = AgentService.from_settings(settings)
    tools = service.list_tools(args.category)

    if args.json:
        console.print_json(json.dumps(tools, indent=2))
        return

    table = Table(title="Available Tools")
    table.add_column("Name", style="cyan")
    table.add_column("Category", style="dim")
    table.add_column("Credits", justify="right")
    table.add_column("Est. time", justify="right")
    table.add_column("Description")

    for tool in tools:
        table.add_row(
            tool["name"],
            tool["category"],
            str(tool["creditsRequired"]),
            f"{tool['estimatedTimeSeconds']}s",
            tool["description"][:60],
        )

    console.print(table)
    console.print(f"\n[dim]Total: {len(tools)} tools[/dim]")


async def cmd_chat(args: argparse.Namespace, settings: RuntimeSettings) -> int:
    """Create a session, send one message and print the events."""
    service = AgentService.from_settings(settings)
    config: dict[str, object] = {}
    if args.model:
        config["model"] = args.model
    if args.max_steps:
        config["maxSteps"] = args.max_steps
    images = [_image_arg(v) for v in args.images or []]

    try:
        session_id = service.create_session(args.user, config)["sessionId"]
        console.print(f"[dim]Session {session_id}[/dim]\n")

        if args.no_stream:
            result = await service.run_message(session_id, args.message, images)
            if result.final_message:
                console.print(result.final_message)
            if result.error:
                console.print(f"[red]Error ({result.error['code']}):[/red] {result.error['message']}")
            console.print(f"\n[dim]{result.steps} steps, {result.total_credits_used} credits[/dim]")
            return 0 if result.ok else 1

        failed = False
        async for event in service.send_message(session_id, args.message, images):
            payload = event.payload
            if event.type == CONTENT_DELTA:
                console.print(payload["content"], end="", markup=False)
            elif event.type == TOOL_START:
                console.print(f"\n[yellow]→ {payload['toolName']}[/yellow] [dim]{json.dumps(payload['args'])[:80]}[/dim]")
            elif event.type == TOOL_RESULT:
                if payload["success"]:
                    console.print(f"  [green]✓[/green] {payload['toolName']} ({payload['creditsUsed']} credits)")
                else:
                    console.print(f"  [red]✗[/red] {payload['toolName']}: {payload['error']}")
            elif event.type == DONE:
                console.print(f"\n\n[dim]{payload['steps']} steps, {payload['totalCreditsUsed']} credits[/dim]")
            elif event.type == ERROR:
                failed = True
                console.print(f"\n[red]Error ({payload['code']}):[/red] {payload['message']}")
        return 1 if failed else 0
    except AgentError as e:
        console.print(f"[red]Error ({e.code}):[/red] {e.message}")
        return 1
    finally:
        await service.close()


def cmd_serve(args: argparse.Namespace, settings: RuntimeSettings) -> None:
    """Run the HTTP API server."""
    from image_agent.web import run_server

    service = AgentService.from_settings(settings)
    console.print(f"[green]Serving image agent on http://{args.host}:{args.port}[/green]")
    run_server(service, host=args.host, port=args.port)


if __name__ == "__main__":
    main()
