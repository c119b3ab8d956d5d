"""CLI entry point for the chat bridge.

Usage:
    vibebridge run                      # start the Telegram bridge
    vibebridge run --config bridge.yaml
    vibebridge ask "list files in current directory"
    vibebridge ask --cwd ~/project --continue "what were we working on?"
    vibebridge ask --json "hello" | jq '.type'
"""
from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

from vibebridge.adapters.events import (
    AgentEvent,
    DoneEvent,
    ErrorEvent,
    InitEvent,
    TextEvent,
    ToolOutputEvent,
    ToolUseEvent,
    event_to_dict,
)
from vibebridge.engine.errors import (
    ConfigError,
    ProcessSpawnError,
    UnexpectedExitError,
)
from vibebridge.engine.models import PermissionMode, ResumeToken
from vibebridge.engine.paths import resolve_path
from vibebridge.engine.providers.base import AgentOptions
from vibebridge.engine.providers.registry import build_agent_registry
from vibebridge.engine.yaml_config import load_yaml_config
from vibebridge.shared.formatters.tool_call import (
    format_tool_use,
    strip_thinking_tags,
    truncate,
)

logger = logging.getLogger(__name__)

# Cap on tool output echoed to the terminal per event
_ASK_OUTPUT_PREVIEW = 200


def configure_logging(level: str, log_dir: str | None, stream: bool = True) -> Path | None:
    """Install a rotating file handler and an optional stderr handler."""
    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    root.handlers.clear()
    formatter = logging.Formatter(
        "%(asctime)s %(levelname)s %(name)s [pid=%(process)d] %(message)s"
    )
    log_file = None
    if log_dir:
        directory = Path(log_dir).expanduser()
        directory.mkdir(parents=True, exist_ok=True)
        log_file = directory / "vibebridge.log"
        file_handler = RotatingFileHandler(
            log_file, maxBytes=2_000_000, backupCount=5, encoding="utf-8"
        )
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)
    if stream:
        stream_handler = logging.StreamHandler(sys.stderr)
        stream_handler.setFormatter(formatter)
        root.addHandler(stream_handler)
    return log_file


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="vibebridge",
        description="Drive a local coding agent from a Telegram chat",
    )
    parser.add_argument(
        "--config", "-c",
        default=None,
        help="YAML config file (default: ~/.vibebridge/config.yaml if present)",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable debug logging",
    )
    sub = parser.add_subparsers(dest="command")

    sub.add_parser("run", help="Start the chat bridge (default)")

    ask = sub.add_parser("ask", help="Run one agent turn from the terminal")
    ask.add_argument(
        "prompt",
        nargs="?",
        default=None,
        help="Prompt text (read from stdin when omitted)",
    )
    ask.add_argument(
        "--cwd",
        default=None,
        help="Working directory (default: current directory)",
    )
    ask.add_argument(
        "--continue",
        dest="continue_recent",
        action="store_true",
        help="Continue the most recent session",
    )
    ask.add_argument(
        "--session",
        default=None,
        help="Resume a specific session id",
    )
    ask.add_argument(
        "--backend",
        default=None,
        help="Agent backend (claude or opencode; default: from config)",
    )
    ask.add_argument(
        "--json",
        dest="json_output",
        action="store_true",
        help="Print normalized events as JSON lines",
    )
    ask.add_argument(
        "--quiet", "-q",
        action="store_true",
        help="Only print the assistant's text",
    )
    return parser


def main(argv: list[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        config = load_yaml_config(args.config)
    except ConfigError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        sys.exit(2)
    if args.verbose:
        config.log_level = "DEBUG"

    if args.command == "ask":
        configure_logging(config.log_level, config.log_dir, stream=args.verbose)
        sys.exit(_run_ask(args, config))

    try:
        config.validate()
    except ConfigError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        sys.exit(2)
    log_file = configure_logging(config.log_level, config.log_dir)
    logger.info("Starting bridge cwd=%s log=%s", Path.cwd(), log_file)

    from vibebridge.bot.app import BridgeApp

    app = BridgeApp(config)
    try:
        asyncio.run(app.run())
    except KeyboardInterrupt:
        print("\nInterrupted.")


def _read_prompt(inline: str | None) -> str:
    if inline:
        return inline
    if sys.stdin.isatty():
        return ""
    return sys.stdin.read().strip()


def _run_ask(args: argparse.Namespace, config) -> int:
    prompt = _read_prompt(args.prompt)
    if not prompt:
        print("Error: Provide a prompt argument or pipe one on stdin.", file=sys.stderr)
        return 1

    token = None
    if args.session:
        token = ResumeToken.for_session(args.session)
    elif args.continue_recent:
        token = ResumeToken.most_recent()

    cwd = resolve_path(args.cwd, os.getcwd()) if args.cwd else os.getcwd()
    backend = args.backend or config.backend
    options = AgentOptions(
        cwd=cwd,
        resume_token=token,
        permission_mode=PermissionMode.BYPASS,
        env={"VIBEBRIDGE_SOURCE": "cli"},
        follow_up_wait_seconds=config.follow_up_wait_seconds,
    )
    printer = _AskPrinter(json_output=args.json_output, quiet=args.quiet)
    try:
        return asyncio.run(_ask(backend, options, prompt, printer, config.agent_commands()))
    except KeyboardInterrupt:
        print("\n[interrupted]")
        return 130


class _AskPrinter:
    """Renders normalized events to stdout for ``vibebridge ask``."""

    def __init__(self, json_output: bool, quiet: bool) -> None:
        self.json_output = json_output
        self.quiet = quiet
        self.failed = False

    def show(self, event: AgentEvent) -> None:
        if self.json_output:
            print(json.dumps(event_to_dict(event)), flush=True)
            if isinstance(event, DoneEvent):
                self.failed = event.is_error
            return

        if isinstance(event, InitEvent):
            if not self.quiet:
                print(f"[session: {(event.session_id or '')[:8]}... | cwd: {event.cwd}]")
        elif isinstance(event, ToolUseEvent):
            if not self.quiet:
                print(f"[tool] {format_tool_use(event.tool, event.input)}")
        elif isinstance(event, ToolOutputEvent):
            if not self.quiet:
                label = "stderr" if event.is_error else "stdout"
                print(f"[{label}] {truncate(event.output, _ASK_OUTPUT_PREVIEW)}")
        elif isinstance(event, TextEvent):
            text = strip_thinking_tags(event.content)
            if text:
                print(text)
        elif isinstance(event, ErrorEvent):
            print(f"[error] {event.content}", file=sys.stderr)
        elif isinstance(event, DoneEvent):
            self.failed = event.is_error
            if not self.quiet:
                duration = f"{event.duration_ms}ms" if event.duration_ms is not None else "-"
                print(f"\n[{'error' if event.is_error else 'done'}] {duration}")
            if event.is_error and event.content:
                print(event.content, file=sys.stderr)
        sys.stdout.flush()


async def _ask(
    backend: str,
    options: AgentOptions,
    prompt: str,
    printer: _AskPrinter,
    commands: dict[str, str],
) -> int:
    finished = asyncio.Event()
    crash: list[UnexpectedExitError] = []

    async def on_event(event: AgentEvent) -> None:
        printer.show(event)
        if isinstance(event, DoneEvent):
            finished.set()

    async def on_close(exit_code: int | None, stderr: str) -> None:
        if not finished.is_set():
            crash.append(UnexpectedExitError(exit_code, stderr))
            finished.set()

    registry = build_agent_registry(commands)
    try:
        agent = registry.create(backend, options, on_event)
    except KeyError as exc:
        print(f"Error: {exc.args[0]}", file=sys.stderr)
        return 1
    agent.set_on_close(on_close)
    try:
        await agent.start(prompt)
    except ProcessSpawnError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    try:
        await finished.wait()
    finally:
        await agent.stop()

    if crash:
        print(crash[0].user_message(), file=sys.stderr)
        return 1
    return 1 if printer.failed else 0


if __name__ == "__main__":
    main()
