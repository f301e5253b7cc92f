"""
aura-voice client

Command-line surface for the aura-voice daemon.
"""

import json
import logging
import sys
from typing import Any, Dict, Iterator, Optional

from aura_voice.config import Config
from aura_voice.ipc import (
    ATTACH_COMMAND,
    create_client_socket,
    is_reply,
    make_request,
    recv_message,
    send_message,
)

logger = logging.getLogger(__name__)

# Exit codes
EXIT_SUCCESS = 0
EXIT_ERROR = 1
EXIT_USAGE = 2


class ClientError(Exception):
    """Daemon rejected a command or could not be reached"""

    def __init__(self, message: str, code: str = "ERROR", detail: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.code = code
        self.detail = detail or {}


class DaemonConnection:
    """One persistent connection; replies are matched to requests by id"""

    def __init__(self, config: Config):
        self.config = config
        self._sock = None
        self._next_id = 1

    def __enter__(self) -> "DaemonConnection":
        self.connect()
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def connect(self) -> None:
        try:
            self._sock = create_client_socket(self.config.get_socket_path())
        except (ConnectionError, OSError) as e:
            raise ClientError(f"Cannot connect to server: {e}", "CONNECTION_ERROR") from e

    def close(self) -> None:
        if self._sock is not None:
            try:
                self._sock.close()
            except OSError:
                pass
            self._sock = None

    def request(self, command: str, args: Optional[Dict[str, Any]] = None) -> Any:
        """
        Send a command and wait for its reply

        Events arriving before the reply are skipped.

        Returns:
            The reply's result

        Raises:
            ClientError: On an error reply or a broken connection
        """
        request_id = self._next_id
        self._next_id += 1
        try:
            send_message(self._sock, make_request(command, args, request_id))
            while True:
                message = recv_message(self._sock)
                if message is None:
                    raise ClientError("No response from server", "CONNECTION_ERROR")
                if is_reply(message) and message.get("id") == request_id:
                    break
        except (OSError, ValueError) as e:
            raise ClientError(f"Communication error: {e}", "CONNECTION_ERROR") from e

        if message.get("status") != "ok":
            detail = {
                k: v for k, v in message.items() if k not in ("type", "status", "code", "message", "id")
            }
            raise ClientError(message.get("message", "unknown"), message.get("code", "ERROR"), detail)
        return message.get("result")

    def events(self) -> Iterator[Dict[str, Any]]:
        """Attach and yield pushed events, starting with the current state"""
        send_message(self._sock, make_request(ATTACH_COMMAND, request_id=0))
        while True:
            message = recv_message(self._sock)
            if message is None:
                return
            if message.get("type") == "event":
                yield message
            elif message.get("status") == "error":
                raise ClientError(message.get("message", "unknown"), message.get("code", "ERROR"))


def run_command(config: Config, command: str, args: Optional[Dict[str, Any]] = None) -> int:
    """
    Send one command and print its result

    Args:
        config: Configuration
        command: Daemon command name
        args: Command arguments

    Returns:
        Exit code
    """
    try:
        with DaemonConnection(config) as conn:
            result = conn.request(command, args)
    except ClientError as e:
        _report(e)
        return EXIT_ERROR

    _print_result(command, result)
    return EXIT_SUCCESS


def set_max_history(config: Config, max_entries: int, assume_yes: bool = False) -> int:
    """
    Change the history limit, asking before entries are deleted

    Args:
        config: Configuration
        max_entries: New limit
        assume_yes: Skip the confirmation prompt

    Returns:
        Exit code
    """
    try:
        with DaemonConnection(config) as conn:
            check = conn.request("check-history-reduction", {"max_entries": max_entries})
            delete_count = check["delete_count"]
            if delete_count and not assume_yes:
                answer = input(f"This will delete the {delete_count} oldest history entries. Continue? [y/N] ")
                if answer.strip().lower() not in ("y", "yes"):
                    print("Aborted", file=sys.stderr)
                    return EXIT_ERROR
            result = conn.request("update-settings", {
                "settings": {"max_history_entries": max_entries},
                "confirm": bool(delete_count),
                "expected_delete_count": delete_count,
            })
    except ClientError as e:
        _report(e)
        return EXIT_ERROR

    print(f"History limit set to {max_entries} ({result['purged']} entries deleted)")
    return EXIT_SUCCESS


def watch(config: Config) -> int:
    """Print pushed events as JSON lines until interrupted"""
    try:
        with DaemonConnection(config) as conn:
            for event in conn.events():
                print(json.dumps(event, ensure_ascii=False), flush=True)
    except KeyboardInterrupt:
        return EXIT_SUCCESS
    except (ClientError, OSError, ValueError) as e:
        logger.error(f"Watch failed: {e}")
        return EXIT_ERROR
    return EXIT_SUCCESS


def _report(error: ClientError) -> None:
    logger.error(f"Server error ({error.code}): {error.message}")
    if error.code == "CONFIRMATION_REQUIRED":
        logger.error(f"{error.detail.get('delete_count')} entries would be deleted; pass --yes to confirm")


def _print_result(command: str, result: Any) -> None:
    if command == "get-history":
        for entry in result["entries"]:
            marker = "*" if not entry["response"] else " "
            print(f"{entry['id']} {marker} {entry['timestamp']}  [{entry['agent_name']}]  {entry['transcription']}")
            if entry["response"]:
                print(f"    -> {entry['response']}")
        return

    if command == "get-state":
        snapshot = result["snapshot"]
        print(f"state: {snapshot['current_state']}")
        print(f"recording: {'yes' if snapshot['is_recording'] else 'no'}")
        print(f"agent: {snapshot['selected_agent_id'] or '-'}")
        if result.get("pending_transcript"):
            print(f"pending: {result['pending_transcript']['text']}")
        if result.get("error"):
            print(f"error: {result['error']}")
        return

    if result is not None:
        print(json.dumps(result, indent=2, ensure_ascii=False))
