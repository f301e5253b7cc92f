"""
aura-voice CLI

Entry point for the aura-voice command.
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from aura_voice import __version__
from aura_voice.client import EXIT_SUCCESS, EXIT_USAGE, run_command, set_max_history, watch
from aura_voice.config import Config


def setup_logging(verbose: bool = False) -> None:
    """Configure logging"""
    level = logging.DEBUG if verbose else logging.INFO
    format_str = "%(asctime)s %(levelname)s %(name)s: %(message)s"

    logging.basicConfig(
        level=level,
        format=format_str,
        stream=sys.stdout,
    )

    # Reduce noise from third-party libraries
    logging.getLogger("faster_whisper").setLevel(logging.WARNING)
    logging.getLogger("openai").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)


def create_parser() -> argparse.ArgumentParser:
    """Create argument parser"""
    parser = argparse.ArgumentParser(
        prog="aura-voice",
        description="Voice-driven AI assistant daemon",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"aura-voice {__version__}",
    )
    parser.add_argument(
        "-c", "--config",
        type=Path,
        help="Path to config file (default: config.yml in the project root)",
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # serve command
    serve_parser = subparsers.add_parser(
        "serve",
        help="Start the server daemon",
    )
    serve_parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )
    serve_parser.add_argument(
        "--no-hotkeys",
        action="store_true",
        help="Do not register global hotkeys",
    )

    # watch command
    subparsers.add_parser(
        "watch",
        help="Attach and print state events",
    )

    # client command
    client_parser = subparsers.add_parser(
        "client",
        help="Client commands",
    )
    client_subparsers = client_parser.add_subparsers(
        dest="client_command",
        help="Client subcommands",
    )

    client_subparsers.add_parser("start", help="Start recording")
    client_subparsers.add_parser("stop", help="Stop recording and process")
    toggle_parser = client_subparsers.add_parser("toggle", help="Toggle recording")
    toggle_parser.add_argument("agent_id", nargs="?", help="Agent to record for")

    select_parser = client_subparsers.add_parser("select", help="Select an agent")
    select_parser.add_argument("agent_id", help="Agent identifier")

    process_parser = client_subparsers.add_parser(
        "process",
        help="Run the pending (or given) transcript through the selected agent",
    )
    process_parser.add_argument("text", nargs="?", help="Transcript text")

    client_subparsers.add_parser("skip", help="Save the pending transcript without AI")
    client_subparsers.add_parser("state", help="Show current state")
    client_subparsers.add_parser("agents", help="List agents")
    client_subparsers.add_parser("settings", help="Show settings")
    client_subparsers.add_parser("history", help="List history, newest first")

    delete_parser = client_subparsers.add_parser("delete", help="Delete a history entry")
    delete_parser.add_argument("entry_id", help="History entry identifier")

    client_subparsers.add_parser("clear", help="Delete all history")

    max_parser = client_subparsers.add_parser("set-max-history", help="Change the history limit")
    max_parser.add_argument("max_entries", type=int, help="New limit")
    max_parser.add_argument("-y", "--yes", action="store_true", help="Do not ask for confirmation")

    client_subparsers.add_parser("dismiss", help="Dismiss the current error")
    client_subparsers.add_parser("reset", help="Abort the current session")

    return parser


def client_request(parsed: argparse.Namespace) -> Tuple[str, Dict[str, Any]]:
    """Map a client subcommand to a daemon command and its arguments"""
    name = parsed.client_command
    if name == "start":
        return "start-recording", {}
    if name == "stop":
        return "stop-recording", {}
    if name == "toggle":
        return "toggle-recording", {"agent_id": parsed.agent_id} if parsed.agent_id else {}
    if name == "select":
        return "select-agent", {"agent_id": parsed.agent_id}
    if name == "process":
        return "process-with-ai", {"transcript": parsed.text} if parsed.text else {}
    if name == "skip":
        return "skip-ai", {}
    if name == "state":
        return "get-state", {}
    if name == "agents":
        return "get-agents", {}
    if name == "settings":
        return "get-settings", {}
    if name == "history":
        return "get-history", {}
    if name == "delete":
        return "delete-history", {"entry_id": parsed.entry_id}
    if name == "clear":
        return "clear-history", {}
    if name == "dismiss":
        return "dismiss-error", {}
    if name == "reset":
        return "reset", {}
    raise ValueError(f"Unknown client command: {name}")


def main(args: Optional[List[str]] = None) -> int:
    """Main entry point"""
    parser = create_parser()
    parsed = parser.parse_args(args)

    if not parsed.command:
        parser.print_help()
        return EXIT_USAGE

    config = Config.load(parsed.config)

    if parsed.command == "serve":
        setup_logging(verbose=parsed.verbose)
        from aura_voice.server import run_server

        run_server(config, verbose=parsed.verbose, hotkeys=False if parsed.no_hotkeys else None)
        return EXIT_SUCCESS

    # Minimal logging for client commands
    logging.basicConfig(
        level=logging.ERROR,
        format="%(message)s",
        stream=sys.stderr,
    )

    if parsed.command == "watch":
        return watch(config)

    elif parsed.command == "client":
        if not parsed.client_command:
            parser.parse_args(["client", "--help"])
            return EXIT_USAGE

        if parsed.client_command == "set-max-history":
            return set_max_history(config, parsed.max_entries, assume_yes=parsed.yes)

        try:
            command, command_args = client_request(parsed)
        except ValueError as e:
            print(e, file=sys.stderr)
            return EXIT_USAGE
        return run_command(config, command, command_args)

    else:
        print(f"Unknown command: {parsed.command}", file=sys.stderr)
        return EXIT_USAGE


if __name__ == "__main__":
    sys.exit(main())
