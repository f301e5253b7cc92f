"""Tests for request handling over a live connection."""

import socket
import threading

import pytest

from aura_voice.config import Config
from aura_voice.errors import SyncError
from aura_voice.ipc import make_request, recv_message, send_message
from aura_voice.server import ConnectionWriter, Server


@pytest.fixture
def connection(tmp_path, machine):
    server = Server(Config.from_dict({}, config_path=tmp_path), hotkeys=False)
    server.machine = machine
    server._running = True
    client_sock, server_sock = socket.socketpair()
    client_sock.settimeout(5)
    handler = threading.Thread(target=server._handle_client, args=(server_sock,), daemon=True)
    handler.start()
    yield client_sock
    client_sock.close()
    handler.join(timeout=5)


def request(sock, command, args=None, request_id=1):
    send_message(sock, make_request(command, args, request_id))
    while True:
        message = recv_message(sock)
        if message.get("type") == "reply":
            return message


class TestServerConnection:
    def test_command_reply(self, connection):
        reply = request(connection, "get-state")
        assert reply["status"] == "ok"
        assert reply["id"] == 1
        assert reply["result"]["snapshot"]["current_state"] == "idle"

    def test_error_reply_carries_code(self, connection):
        reply = request(connection, "select-agent", {"agent_id": "off"})
        assert reply["status"] == "error"
        assert reply["code"] == "AGENT_INVALID"
        assert reply["reason"] == "disabled"

    def test_unknown_command(self, connection):
        reply = request(connection, "fly")
        assert reply["code"] == "VALIDATION_ERROR"

    def test_missing_command(self, connection):
        send_message(connection, {"args": {}, "id": 9})
        reply = recv_message(connection)
        assert reply["status"] == "error"
        assert reply["id"] == 9

    def test_attach_receives_snapshot_then_events(self, connection):
        send_message(connection, make_request("attach", request_id=1))
        first = recv_message(connection)
        assert first["event"] == "app-state"
        assert first["snapshot"]["selected_agent_id"] == "writer"
        assert recv_message(connection)["type"] == "reply"

        send_message(connection, make_request("start-recording", request_id=2))
        messages = []
        while True:
            message = recv_message(connection)
            messages.append(message)
            if message.get("type") == "reply":
                break
        events = [m["event"] for m in messages if m.get("type") == "event"]
        assert "state-changed" in events
        assert "recording-state-changed" in events

    def test_detached_on_close(self, connection, machine):
        request(connection, "attach")
        assert len(machine.broadcaster.observer_ids) == 1
        connection.close()
        for _ in range(50):
            machine.wait_until_settled(timeout=1)
            if not machine.broadcaster.observer_ids:
                break
            threading.Event().wait(0.05)
        assert machine.broadcaster.observer_ids == []


class TestConnectionWriter:
    def test_stalled_peer_is_dropped_without_blocking_commands(self, machine):
        sock, peer = socket.socketpair()
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_SNDBUF, 4096)
        writer = ConnectionWriter(sock, max_pending=16)
        machine.attach("stalled", writer.send).result(timeout=5)
        try:
            # The peer never reads
            for n in range(1000):
                machine.submit("select-agent", {"agent_id": "dictation" if n % 2 == 0 else "writer"})

            state = machine.submit("get-state").result(timeout=5)
            assert state["snapshot"]["current_state"] == "idle"
            assert "stalled" not in machine.broadcaster.observer_ids
            assert writer.closed
        finally:
            writer.close()
            sock.close()
            peer.close()

    def test_close_flushes_queued_messages(self):
        sock, peer = socket.socketpair()
        peer.settimeout(5)
        writer = ConnectionWriter(sock)
        writer.send({"type": "event", "event": "app-state"})
        writer.send({"type": "reply", "id": 1, "status": "ok"})
        writer.close()

        assert recv_message(peer)["event"] == "app-state"
        assert recv_message(peer)["id"] == 1
        sock.close()
        peer.close()

    def test_send_after_close_raises(self):
        sock, peer = socket.socketpair()
        writer = ConnectionWriter(sock)
        writer.close()
        with pytest.raises(SyncError):
            writer.send({"type": "event", "event": "state-changed"})
        sock.close()
        peer.close()
