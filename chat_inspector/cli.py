from __future__ import annotations

import argparse
import os
import socket
import sys
import threading
import time
import webbrowser
from importlib.metadata import PackageNotFoundError, version as package_version
from pathlib import Path
from typing import Any

import questionary
import uvicorn
from rich import box
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from chat_inspector import __version__ as PACKAGE_VERSION
from chat_inspector.config import load_settings
from chat_inspector.exporter import EXPORT_FORMATS
from chat_inspector.parsers import TranscriptParseError
from chat_inspector.services import InspectorService, prompt_label, truncate

CONSOLE = Console()
TURN_STYLES = {"You": "cyan", "Thinking": "magenta", "Gemini": "green"}


def _info(message: str) -> None:
    CONSOLE.print(message, style="bold white")


def _warn(message: str) -> None:
    CONSOLE.print(message, style="bold yellow")


def _error(message: str) -> None:
    CONSOLE.print(message, style="bold red")


def _success(message: str) -> None:
    CONSOLE.print(message, style="bold green")


def _section(title: str) -> None:
    CONSOLE.print(f"\n[bold cyan]{title}[/bold cyan]")


def _load_service(path: Path | None) -> InspectorService | None:
    settings = load_settings()
    service = InspectorService(settings)
    try:
        with CONSOLE.status("[bold cyan]Loading transcript...", spinner="dots"):
            service.load(path)
    except TranscriptParseError as exc:
        _error(f"Could not parse transcript: {exc}")
        return None
    except OSError as exc:
        _error(f"Could not read transcript: {exc}")
        return None
    except RuntimeError as exc:
        _error(str(exc))
        return None
    return service


def _with_service(handler):
    def _run(args: argparse.Namespace) -> int:
        service = _load_service(args.file)
        if service is None:
            return 1
        return handler(service, args)

    return _run


def _current_version() -> str:
    try:
        return package_version("chat-inspector")
    except PackageNotFoundError:
        return PACKAGE_VERSION


def _add_file_argument(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "-f",
        "--file",
        type=Path,
        default=None,
        help="Transcript JSON file (default: CHAT_INSPECTOR_TRANSCRIPT_PATH)",
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="AI Studio transcript inspector")
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {_current_version()}",
    )
    subcommands = parser.add_subparsers(dest="command")

    prompts_parser = subcommands.add_parser("prompts", help="List user prompts")
    _add_file_argument(prompts_parser)
    prompts_parser.set_defaults(func=_with_service(_cmd_prompts))

    show_parser = subcommands.add_parser("show", help="Print one exchange or the full conversation")
    _add_file_argument(show_parser)
    show_group = show_parser.add_mutually_exclusive_group()
    show_group.add_argument("--prompt", type=int, default=1, help="1-based prompt number")
    show_group.add_argument("--all", action="store_true", help="Print every turn")
    show_parser.set_defaults(func=_with_service(_cmd_show))

    search_parser = subcommands.add_parser("search", help="Find prompts containing a phrase")
    search_parser.add_argument("query")
    _add_file_argument(search_parser)
    search_parser.add_argument(
        "--deep",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Also search the model replies (default: CHAT_INSPECTOR_DEEP_SEARCH)",
    )
    search_parser.set_defaults(func=_with_service(_cmd_search))

    export_parser = subcommands.add_parser("export", help="Export the transcript or one exchange")
    _add_file_argument(export_parser)
    export_parser.add_argument("--format", choices=EXPORT_FORMATS, default="md")
    export_parser.add_argument("--prompt", type=int, default=None, help="1-based prompt number")
    export_parser.add_argument(
        "--out",
        type=Path,
        default=None,
        help="Output directory (default: CHAT_INSPECTOR_EXPORT_DIR)",
    )
    export_parser.set_defaults(func=_with_service(_cmd_export))

    media_parser = subcommands.add_parser("media", help="Bundle attachments into a zip archive")
    _add_file_argument(media_parser)
    media_parser.add_argument("--prompt", type=int, default=None, help="1-based prompt number")
    media_parser.add_argument("--out", type=Path, default=None, help="Zip file path")
    media_parser.set_defaults(func=_with_service(_cmd_media))

    inspect_parser = subcommands.add_parser("inspect", help="Print metadata and statistics")
    _add_file_argument(inspect_parser)
    inspect_parser.set_defaults(func=_with_service(_cmd_inspect))

    browse_parser = subcommands.add_parser("browse", help="Pick prompts interactively")
    _add_file_argument(browse_parser)
    browse_parser.set_defaults(func=_with_service(_cmd_browse))

    serve_parser = subcommands.add_parser("serve", help="Start the JSON API server")
    _add_file_argument(serve_parser)
    serve_parser.add_argument("--host", default="127.0.0.1")
    serve_parser.add_argument("--port", type=int, default=8080)
    serve_parser.add_argument("--no-browser", action="store_true")
    serve_parser.set_defaults(func=_run_serve_command)

    return parser


def _prompt_index(service: InspectorService, number: int | None) -> int | None:
    """Convert a 1-based prompt number to an index; warns and returns None when invalid."""
    if number is None:
        return None
    index = number - 1
    if index < 0 or index >= len(service.prompts):
        _warn(f"Prompt {number} does not exist (transcript has {len(service.prompts)} prompts).")
        return None
    return index


def _cmd_prompts(service: InspectorService, args: argparse.Namespace) -> int:
    del args
    prompts = service.list_prompts()
    if not prompts:
        _warn("No user prompts found.")
        return 0

    table = Table(title=escape(service.name), box=box.SIMPLE_HEAVY)
    table.add_column("#", justify="right", style="bold cyan")
    table.add_column("Prompt")
    table.add_column("Media", justify="right")
    table.add_column("Chunk", justify="right", style="dim")
    for prompt in prompts:
        media = ", ".join(prompt["media_types"]) if prompt["has_media"] else ""
        table.add_row(
            str(prompt["index"] + 1),
            escape(prompt["preview"]),
            media,
            str(prompt["original_index"]),
        )
    CONSOLE.print(table)
    return 0


def _print_turn(message: dict[str, Any]) -> None:
    parts: list[str] = []
    for chunk in message["chunks"]:
        if chunk["text"]:
            parts.append(chunk["text"])
        elif chunk["kind"] != "empty":
            reference = chunk.get("file_id") or chunk.get("mime_type") or chunk["kind"]
            parts.append(f"[{chunk['kind']}: {reference}]")
    subtitle = f"{message['token_count']} tokens" if message["token_count"] else None
    CONSOLE.print(
        Panel(
            Text("\n\n".join(parts)) if parts else Text("(empty)", style="dim"),
            title=message["label"],
            title_align="left",
            subtitle=subtitle,
            border_style=TURN_STYLES.get(message["label"], "white"),
        )
    )


def _cmd_show(service: InspectorService, args: argparse.Namespace) -> int:
    if args.all:
        conversation = service.get_conversation()
        if not conversation["messages"]:
            _warn("Transcript has no chunks.")
            return 0
        for message in conversation["messages"]:
            _print_turn(message)
        return 0

    index = _prompt_index(service, args.prompt)
    if index is None:
        return 1
    turn = service.get_turn(index)
    if turn is None:
        return 1
    _section(f"Prompt {index + 1} of {len(service.prompts)}")
    for message in turn["messages"]:
        _print_turn(message)
    return 0


def _cmd_search(service: InspectorService, args: argparse.Namespace) -> int:
    matches = service.search(args.query, deep=args.deep)
    if not matches:
        _warn(f"No prompts match {args.query!r}.")
        return 1

    table = Table(title=escape(f"Matches for {args.query!r}"), box=box.SIMPLE_HEAVY)
    table.add_column("#", justify="right", style="bold cyan")
    table.add_column("Prompt")
    for index in matches:
        prompt = service.prompts[index]
        table.add_row(str(index + 1), escape(truncate(prompt_label(prompt), 80)))
    CONSOLE.print(table)
    return 0


def _cmd_export(service: InspectorService, args: argparse.Namespace) -> int:
    prompt_index = None
    if args.prompt is not None:
        prompt_index = _prompt_index(service, args.prompt)
        if prompt_index is None:
            return 1

    output_path = service.export(args.format, prompt_index=prompt_index, output_dir=args.out)
    if output_path is None:
        _warn("Nothing to export.")
        return 1
    _success(f"Exported {args.format} to {output_path}")
    return 0


def _cmd_media(service: InspectorService, args: argparse.Namespace) -> int:
    prompt_index = None
    if args.prompt is not None:
        prompt_index = _prompt_index(service, args.prompt)
        if prompt_index is None:
            return 1

    items = service.media_items(prompt_index)
    if not items:
        _warn("No attachments found.")
        return 1
    output_path = service.export_media(prompt_index=prompt_index, output_path=args.out)
    drive_count = sum(1 for item in items if item.type == "drive")
    _success(f"Wrote {len(items)} attachments to {output_path}")
    if drive_count:
        _info(f"{drive_count} Drive attachments were saved as download links.")
    return 0


def _cmd_inspect(service: InspectorService, args: argparse.Namespace) -> int:
    del args
    metadata = service.get_metadata()
    statistics = service.get_statistics()

    table = Table(title="Transcript Summary", box=box.SIMPLE_HEAVY)
    table.add_column("Metric", style="bold cyan")
    table.add_column("Value", justify="right")
    table.add_row("Model", metadata["model"] or "unknown")
    for key, value in statistics.items():
        table.add_row(key.replace("_", " ").capitalize(), str(value))
    CONSOLE.print(table)

    if metadata["run_settings"]:
        settings_table = Table(title="Run Settings", box=box.SIMPLE)
        settings_table.add_column("Key", style="bold")
        settings_table.add_column("Value")
        for key, value in metadata["run_settings"].items():
            settings_table.add_row(key, escape(str(value)))
        CONSOLE.print(settings_table)

    if metadata["safety_settings"]:
        safety_table = Table(title="Safety Settings", box=box.SIMPLE)
        safety_table.add_column("Category", style="bold")
        safety_table.add_column("Threshold")
        for row in metadata["safety_settings"]:
            safety_table.add_row(row["category"], row["threshold"])
        CONSOLE.print(safety_table)

    _section("System instructions")
    if metadata["system_instruction"]:
        CONSOLE.print(metadata["system_instruction"], markup=False)
    else:
        CONSOLE.print("[dim]No instructions found.[/dim]")
    _section("Citations")
    if metadata["citations"]:
        for uri in metadata["citations"]:
            CONSOLE.print(f"- {uri}", markup=False)
    else:
        CONSOLE.print("[dim]No citations found.[/dim]")
    return 0


def _select_option(
    *,
    prompt: str,
    options: list[tuple[str, Any]],
) -> Any:
    if not options:
        raise ValueError("Selector options cannot be empty")
    labels = [label for label, _ in options]
    selected_label = questionary.select(
        prompt,
        choices=labels,
        qmark="",
        pointer="❯",
    ).ask()
    if selected_label is None:
        return options[-1][1]
    for label, value in options:
        if label == selected_label:
            return value
    return options[-1][1]


def _select_prompt(service: InspectorService) -> int | None:
    options: list[tuple[str, int | None]] = [
        (f"{prompt['index'] + 1}. {prompt['preview']}", prompt["index"])
        for prompt in service.list_prompts()
    ]
    options.append(("Quit", None))
    return _select_option(prompt="Open prompt", options=options)


def _cmd_browse(service: InspectorService, args: argparse.Namespace) -> int:
    del args
    if not service.prompts:
        _warn("No user prompts found.")
        return 0
    while True:
        index = _select_prompt(service)
        if index is None:
            return 0
        turn = service.get_turn(index)
        if turn is None:
            continue
        _section(f"Prompt {index + 1} of {len(service.prompts)}")
        for message in turn["messages"]:
            _print_turn(message)


def _browser_host(host: str) -> str:
    return "127.0.0.1" if host in {"0.0.0.0", "::"} else host


def _wait_for_server(host: str, port: int, *, timeout_seconds: float = 30.0) -> bool:
    deadline = time.monotonic() + timeout_seconds
    while time.monotonic() < deadline:
        try:
            with socket.create_connection((host, port), timeout=1.0):
                return True
        except OSError:
            time.sleep(0.2)
    return False


def _open_browser_when_ready(host: str, port: int) -> None:
    browser_host = _browser_host(host)
    url = f"http://{browser_host}:{port}/api/docs"

    def _worker() -> None:
        if _wait_for_server(browser_host, port):
            webbrowser.open(url)
        else:
            _warn(f"Server did not become ready in time, open manually: {url}")

    thread = threading.Thread(target=_worker, daemon=True)
    thread.start()


def _run_serve(*, host: str, port: int, no_browser: bool, transcript: Path | None) -> int:
    if transcript is not None:
        os.environ["CHAT_INSPECTOR_TRANSCRIPT_PATH"] = str(transcript.expanduser().resolve())
    elif load_settings().transcript_path is None:
        _error("No transcript given. Pass --file or set CHAT_INSPECTOR_TRANSCRIPT_PATH.")
        return 1

    if not no_browser:
        _info(f"Browser will open when ready at http://{_browser_host(host)}:{port}/api/docs")
        _open_browser_when_ready(host, port)
    _info(f"Starting server on http://{host}:{port}")
    uvicorn.run("chat_inspector.server:create_app", factory=True, host=host, port=port)
    return 0


def _run_serve_command(args: argparse.Namespace) -> int:
    return _run_serve(
        host=args.host,
        port=args.port,
        no_browser=args.no_browser,
        transcript=args.file,
    )


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    handler = getattr(args, "func", None)
    if handler is None:
        parser.print_help()
        return 1
    return handler(args)


if __name__ == "__main__":
    sys.exit(main())
