"""
Unix domain socket IPC protocol

Length-prefixed JSON messages between the aura-voice daemon and its
surfaces. A connection either issues request/reply commands or, after an
``attach`` request, also receives pushed events on the same socket.
"""

import json
import logging
import os
import socket
import struct
from pathlib import Path
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

# Message framing: 4-byte length prefix (big-endian) + JSON payload
HEADER_SIZE = 4
MAX_MESSAGE_SIZE = 1024 * 1024  # 1MB max message

ATTACH_COMMAND = "attach"


def create_server_socket(socket_path: Path) -> socket.socket:
    """
    Create and bind a Unix domain socket for the server

    Args:
        socket_path: Path to the socket file

    Returns:
        Bound socket ready for listening
    """
    # Remove stale socket file
    if socket_path.exists():
        socket_path.unlink()
    socket_path.parent.mkdir(parents=True, exist_ok=True)

    sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
    sock.bind(str(socket_path))

    # Owner read/write only
    os.chmod(socket_path, 0o600)

    return sock


def create_client_socket(socket_path: Path, timeout: Optional[float] = None) -> socket.socket:
    """
    Create and connect a Unix domain socket for the client

    Args:
        socket_path: Path to the socket file
        timeout: Socket timeout in seconds, None to block

    Returns:
        Connected socket

    Raises:
        ConnectionError: If the daemon is not running
    """
    if not socket_path.exists():
        raise ConnectionError(f"Server socket not found: {socket_path}")

    sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
    sock.settimeout(timeout)
    sock.connect(str(socket_path))

    return sock


def send_message(sock: socket.socket, message: Dict[str, Any]) -> None:
    """
    Send a JSON message over the socket

    Args:
        sock: Connected socket
        message: Dictionary to send as JSON
    """
    payload = json.dumps(message).encode('utf-8')

    if len(payload) > MAX_MESSAGE_SIZE:
        raise ValueError(f"Message too large: {len(payload)} bytes")

    header = struct.pack('>I', len(payload))
    sock.sendall(header + payload)


def recv_message(sock: socket.socket) -> Optional[Dict[str, Any]]:
    """
    Receive a JSON message from the socket

    Args:
        sock: Connected socket

    Returns:
        Parsed message dictionary, or None if connection closed
    """
    header = _recv_exact(sock, HEADER_SIZE)
    if not header:
        return None

    length = struct.unpack('>I', header)[0]

    if length > MAX_MESSAGE_SIZE:
        raise ValueError(f"Message too large: {length} bytes")

    payload = _recv_exact(sock, length)
    if payload is None:
        return None

    return json.loads(payload.decode('utf-8'))


def _recv_exact(sock: socket.socket, size: int) -> Optional[bytes]:
    """
    Receive exactly size bytes from socket

    Returns:
        Received bytes, or None if connection closed
    """
    data = b''
    while len(data) < size:
        chunk = sock.recv(size - len(data))
        if not chunk:
            return None
        data += chunk
    return data


# Request/Response helpers

def make_request(command: str, args: Optional[Dict[str, Any]] = None, request_id: Optional[int] = None) -> Dict[str, Any]:
    """Create a command request"""
    request: Dict[str, Any] = {"command": command, "args": args or {}}
    if request_id is not None:
        request["id"] = request_id
    return request


def make_ok_response(result: Any = None, request_id: Optional[int] = None) -> Dict[str, Any]:
    """Create a success response"""
    response: Dict[str, Any] = {"type": "reply", "status": "ok", "result": result}
    if request_id is not None:
        response["id"] = request_id
    return response


def make_error_response(message: str, code: str = "ERROR", request_id: Optional[int] = None, **detail: Any) -> Dict[str, Any]:
    """Create an error response"""
    response: Dict[str, Any] = {"type": "reply", "status": "error", "code": code, "message": message}
    response.update(detail)
    if request_id is not None:
        response["id"] = request_id
    return response


def is_reply(message: Dict[str, Any]) -> bool:
    return message.get("type") == "reply"
