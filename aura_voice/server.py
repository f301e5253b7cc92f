"""
aura-voice server

Daemon that:
- Owns the session state machine and its collaborators
- Serves surface commands over a Unix socket
- Pushes state events to attached surfaces
- Maps agent hotkeys to recording toggles
"""

import itertools
import logging
import queue
import signal
import socket
import threading
from concurrent.futures import TimeoutError as FutureTimeout
from typing import Any, Dict, Optional

from aura_voice.agents import AgentRegistry
from aura_voice.broadcaster import SETTINGS_UPDATED, SendFn, SurfaceBroadcaster
from aura_voice.capture import CaptureEngine
from aura_voice.completion import OpenAICompletionService
from aura_voice.config import Config
from aura_voice.errors import AuraError, SyncError
from aura_voice.history import ArtifactStore, HistoryStore
from aura_voice.hotkeys import HotkeyManager
from aura_voice.ipc import (
    ATTACH_COMMAND,
    create_server_socket,
    make_error_response,
    make_ok_response,
    recv_message,
    send_message,
)
from aura_voice.pipeline import ProcessingPipeline
from aura_voice.session import SessionStateMachine
from aura_voice.settings import SettingsStore
from aura_voice.transcriber import create_transcriber

logger = logging.getLogger(__name__)

HOTKEY_OBSERVER_ID = "hotkeys"

_CLOSE = object()


def build_state_machine(config: Config) -> SessionStateMachine:
    """
    Load persisted state and wire the session core together

    Args:
        config: Daemon configuration

    Returns:
        A SessionStateMachine that has not been started yet
    """
    settings_store = SettingsStore(config.get_settings_path())
    settings = settings_store.load()

    registry = AgentRegistry(settings.agents)
    artifacts = ArtifactStore(config.get_recordings_dir())
    history = HistoryStore(config.get_history_path(), artifacts, settings.max_history_entries)
    history.load()

    api_key = settings.resolve_api_key()
    if not api_key:
        logger.warning("No OpenAI API key configured; set it in settings or OPENAI_API_KEY")
    pipeline = ProcessingPipeline(
        create_transcriber(config.transcription, api_key),
        OpenAICompletionService(config.completion, api_key),
        api_key=api_key,
    )

    first_agent = registry.first_enabled()
    return SessionStateMachine(
        registry=registry,
        history=history,
        capture=CaptureEngine(config.audio),
        pipeline=pipeline,
        settings_store=settings_store,
        broadcaster=SurfaceBroadcaster(),
        session_config=config.session,
        selected_agent_id=first_agent.id if first_agent else None,
    )


class Server:
    """
    aura-voice server daemon

    Manages:
    - Session state machine
    - Surface connections via Unix socket
    - Global hotkeys
    """

    def __init__(self, config: Config, verbose: bool = False, hotkeys: Optional[bool] = None):
        """
        Initialize server

        Args:
            config: Server configuration
            verbose: Enable verbose logging
            hotkeys: Register global hotkeys (defaults to config)
        """
        self.config = config
        self.verbose = verbose
        self.hotkeys_enabled = config.server.hotkeys if hotkeys is None else hotkeys
        self.machine: Optional[SessionStateMachine] = None
        self._running = False
        self._server_socket: Optional[socket.socket] = None
        self._hotkeys: Optional[HotkeyManager] = None
        self._connection_ids = itertools.count(1)

    def run(self) -> None:
        """Run the server (blocking)"""
        self._running = True

        signal.signal(signal.SIGTERM, self._signal_handler)
        signal.signal(signal.SIGINT, self._signal_handler)

        self.machine = build_state_machine(self.config)
        self.machine.start()

        if self.hotkeys_enabled:
            self._start_hotkeys()

        socket_path = self.config.get_socket_path()
        self._server_socket = create_server_socket(socket_path)
        self._server_socket.listen(5)
        self._server_socket.settimeout(1.0)  # Allow periodic shutdown check

        logger.info(f"Server listening on {socket_path}")

        self._accept_connections()

        self._cleanup()

    def _signal_handler(self, signum: int, frame) -> None:
        """Handle termination signals"""
        logger.info(f"Received signal {signum}, shutting down...")
        self._running = False

    def _start_hotkeys(self) -> None:
        self._hotkeys = HotkeyManager(self._on_hotkey)
        try:
            self._hotkeys.bind(self.machine.registry.all())
        except Exception as e:
            logger.warning(f"Global hotkeys unavailable: {e}")
            self._hotkeys = None
            return
        self.machine.attach(HOTKEY_OBSERVER_ID, self._on_local_event)

    def _on_hotkey(self, agent_id: str) -> None:
        future = self.machine.submit("toggle-recording", {"agent_id": agent_id})
        future.add_done_callback(_log_rejection)

    def _on_local_event(self, message: Dict[str, Any]) -> None:
        """In-process observer: rebinds hotkeys when agents change"""
        if message.get("event") != SETTINGS_UPDATED or self._hotkeys is None:
            return
        try:
            self._hotkeys.bind(self.machine.registry.all())
        except Exception as e:
            logger.warning(f"Failed to rebind hotkeys: {e}")

    def _accept_connections(self) -> None:
        """Accept and handle client connections"""
        while self._running:
            try:
                client_sock, _ = self._server_socket.accept()
                threading.Thread(
                    target=self._handle_client,
                    args=(client_sock,),
                    daemon=True,
                ).start()
            except socket.timeout:
                continue
            except OSError as e:
                if self._running:
                    logger.error(f"Accept error: {e}")
                break

    def _handle_client(self, client_sock: socket.socket) -> None:
        """Serve one connection until the peer closes it"""
        connection_id = f"surface-{next(self._connection_ids)}"
        writer = ConnectionWriter(client_sock, self.config.server.outbound_queue_size)
        send = writer.send
        try:
            while self._running:
                request = recv_message(client_sock)
                if request is None:
                    break
                send(self._process_request(request, connection_id, send))
        except SyncError as e:
            logger.debug(f"Connection {connection_id} lost: {e}")
        except (OSError, ValueError) as e:
            logger.error(f"Client handler error: {e}")
            try:
                send(make_error_response(str(e), "PROTOCOL_ERROR"))
            except SyncError:
                pass
        finally:
            self.machine.detach(connection_id)
            writer.close()
            try:
                client_sock.close()
            except OSError:
                pass

    def _process_request(self, request: Dict[str, Any], connection_id: str, send: SendFn) -> Dict[str, Any]:
        """Process a client request and return the reply"""
        command = request.get("command")
        args = request.get("args") or {}
        request_id = request.get("id")

        if not command:
            return make_error_response("missing 'command' field", "VALIDATION_ERROR", request_id)
        if not isinstance(args, dict):
            return make_error_response("'args' must be an object", "VALIDATION_ERROR", request_id)

        if command == ATTACH_COMMAND:
            future = self.machine.attach(connection_id, send)
        else:
            future = self.machine.submit(command, args)
        if self.verbose:
            logger.info(f"{connection_id}: {command}")

        try:
            result = future.result(timeout=self.config.server.request_timeout)
        except AuraError as e:
            detail = {k: v for k, v in e.to_dict().items() if k not in ("code", "message")}
            return make_error_response(e.message, e.code, request_id, **detail)
        except FutureTimeout:
            logger.error(f"Command '{command}' timed out")
            return make_error_response(f"command timed out: {command}", "TIMEOUT", request_id)
        except Exception as e:
            return make_error_response(str(e), "INTERNAL_ERROR", request_id)

        return make_ok_response(result, request_id)

    def _cleanup(self) -> None:
        """Cleanup resources"""
        logger.info("Cleaning up...")

        if self._hotkeys:
            self._hotkeys.stop()

        if self.machine:
            self.machine.stop()

        if self._server_socket:
            try:
                self._server_socket.close()
            except OSError:
                pass

        socket_path = self.config.get_socket_path()
        if socket_path.exists():
            try:
                socket_path.unlink()
            except OSError:
                pass

        logger.info("Server stopped")


class ConnectionWriter:
    """
    Outbound queue for one connection, drained by its own thread

    Replies and pushed events share the queue, so they reach the peer in
    the order they were sent. ``send`` never blocks: a peer that stops
    reading fills the queue and the connection is shut down.
    """

    def __init__(self, sock: socket.socket, max_pending: int = 256):
        self._sock = sock
        self._queue: "queue.Queue[Any]" = queue.Queue(maxsize=max_pending)
        self._closed = threading.Event()
        self._thread = threading.Thread(target=self._drain, name="aura-writer", daemon=True)
        self._thread.start()

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def send(self, message: Dict[str, Any]) -> None:
        """
        Queue a message for delivery

        Raises:
            SyncError: If the connection is closed or the peer has fallen
                too far behind
        """
        if self._closed.is_set():
            raise SyncError("Connection closed")
        try:
            self._queue.put_nowait(message)
        except queue.Full:
            self._fail("peer is not reading")
            raise SyncError("Outbound queue full") from None

    def close(self, timeout: float = 1.0) -> None:
        """Flush queued messages and stop the writer thread"""
        if not self._closed.is_set():
            self._closed.set()
            try:
                self._queue.put_nowait(_CLOSE)
            except queue.Full:
                self._shutdown()
        self._thread.join(timeout=timeout)

    def _drain(self) -> None:
        while True:
            message = self._queue.get()
            if message is _CLOSE:
                return
            try:
                send_message(self._sock, message)
            except (OSError, ValueError) as e:
                self._fail(f"send failed: {e}")
                return

    def _fail(self, reason: str) -> None:
        if not self._closed.is_set():
            logger.warning(f"Dropping connection: {reason}")
        self._closed.set()
        self._shutdown()

    def _shutdown(self) -> None:
        # Wakes a blocked sendall here and the handler's recv
        try:
            self._sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass


def _log_rejection(future) -> None:
    error = future.exception()
    if error is not None:
        logger.warning(f"Hotkey toggle rejected: {error}")


def run_server(config: Config, verbose: bool = False, hotkeys: Optional[bool] = None) -> None:
    """
    Run the aura-voice server

    Args:
        config: Server configuration
        verbose: Enable verbose logging
        hotkeys: Register global hotkeys (defaults to config)
    """
    server = Server(config, verbose=verbose, hotkeys=hotkeys)
    server.run()
