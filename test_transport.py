#!/usr/bin/env python3
"""
Transport Channel Tests

What: connect / send / dispatch / reconnect-with-backoff of the device link
Why: the console must survive drops of the serving side without operator action
Expected: 1s, 2s, 4s, 8s, 16s retries then one terminal error; malformed
          frames never reach handlers
"""

import json

from target_trainer.tt_transport import (
    MAX_ATTEMPTS_MESSAGE, Command, MessageType, backoff_delay_ms
)


def collect(channel, msg_type):
    seen = []
    channel.on(msg_type, seen.append)
    return seen


class TestConnectAndSend:

    def test_connect_emits_connected(self, channel, connector):
        events = collect(channel, MessageType.CONNECTION)
        assert channel.connect() is True
        assert channel.is_connected
        assert events == [{"type": "connection", "status": "connected"}]
        assert connector.calls == 1

    def test_send_serializes_type_and_payload(self, channel, connector):
        channel.connect()
        assert channel.send(Command.STOP_TRAINING, {"clientId": 1, "sessionId": "1-5"}) is True
        assert connector.current.sent == [{"type": "stopTraining", "clientId": 1, "sessionId": "1-5"}]

    def test_send_when_closed_returns_false(self, channel):
        assert channel.send(Command.GET_CLIENTS, {}) is False

    def test_send_failure_returns_false(self, channel, connector):
        channel.connect()
        connector.current.fail_send = True
        assert channel.send(Command.GET_CLIENTS, {}) is False

    def test_unserializable_payload_returns_false(self, channel):
        channel.connect()
        assert channel.send(Command.START_TRAINING, {"bad": object()}) is False


class TestDispatch:

    def test_frames_dispatch_by_type(self, channel):
        updates = collect(channel, "clientUpdate")
        assert channel.handle_message(json.dumps({"type": "clientUpdate", "client": {"id": 3}}))
        assert updates == [{"type": "clientUpdate", "client": {"id": 3}}]

    def test_bytes_frames_are_decoded(self, channel):
        updates = collect(channel, MessageType.CLIENT_REMOVED)
        channel.handle_message(b'{"type": "clientRemoved", "clientId": 2}')
        assert updates[0]["clientId"] == 2

    def test_malformed_frames_are_dropped(self, channel):
        seen = []
        for msg_type in MessageType:
            channel.on(msg_type, seen.append)
        assert channel.handle_message("not json{") is False
        assert channel.handle_message(json.dumps([1, 2, 3])) is False
        assert channel.handle_message(json.dumps({"clientId": 1})) is False
        assert seen == []

    def test_failing_handler_does_not_block_others(self, channel):
        def broken(_data):
            raise RuntimeError("boom")
        seen = []
        channel.on("trainingUpdate", broken)
        channel.on("trainingUpdate", seen.append)
        channel.handle_message(json.dumps({"type": "trainingUpdate", "clientId": 1}))
        assert len(seen) == 1

    def test_off_unsubscribes(self, channel):
        seen = []
        channel.on("clientList", seen.append)
        channel.off("clientList", seen.append)
        channel.handle_message(json.dumps({"type": "clientList", "clients": []}))
        assert seen == []


class TestReconnect:

    def test_backoff_delays(self):
        assert [backoff_delay_ms(n, 1000) for n in range(1, 6)] == [1000, 2000, 4000, 8000, 16000]

    def test_drop_emits_disconnected_before_scheduling(self, channel, connector, scheduler):
        order = []
        channel.on(MessageType.CONNECTION, lambda d: order.append((d["status"], len(scheduler.delays))))
        channel.connect()
        channel.handle_close(connector.current)
        assert order == [("connected", 0), ("disconnected", 0)]
        assert scheduler.delays == [1.0]
        assert not channel.is_connected

    def test_gives_up_after_max_attempts(self, channel, connector, scheduler):
        errors = collect(channel, MessageType.ERROR)
        channel.connect()
        connector.fail_next = 100
        channel.handle_close(connector.current)

        while scheduler.pending:
            scheduler.run_next()

        assert scheduler.delays == [1.0, 2.0, 4.0, 8.0, 16.0]
        terminal = [e for e in errors if e.get("terminal")]
        assert len(terminal) == 1
        assert terminal[0]["message"] == MAX_ATTEMPTS_MESSAGE
        assert connector.calls == 6

    def test_successful_reconnect_resets_attempts(self, channel, connector, scheduler):
        channel.connect()
        connector.fail_next = 2
        channel.handle_close(connector.current)
        scheduler.run_next()
        scheduler.run_next()
        assert channel.reconnect_attempts == 3
        scheduler.run_next()
        assert channel.is_connected
        assert channel.reconnect_attempts == 0
        assert scheduler.pending == []

    def test_operator_connect_restarts_budget(self, channel, connector, scheduler):
        channel.connect()
        connector.fail_next = 100
        channel.handle_close(connector.current)
        while scheduler.pending:
            scheduler.run_next()

        connector.fail_next = 0
        assert channel.connect() is True
        assert channel.reconnect_attempts == 0

    def test_disconnect_never_reconnects(self, channel, connector, scheduler):
        events = collect(channel, MessageType.CONNECTION)
        channel.connect()
        ws = connector.current
        channel.disconnect()
        channel.handle_close(ws)
        channel.handle_close()

        assert ws.closed
        assert scheduler.delays == []
        assert events == [{"type": "connection", "status": "connected"}]
        assert channel.send(Command.GET_CLIENTS, {}) is False

    def test_stale_socket_close_is_ignored(self, channel, connector, scheduler):
        channel.connect()
        old = connector.current
        channel.handle_close(old)
        scheduler.run_next()
        channel.handle_close(old)
        assert channel.is_connected
        assert scheduler.delays == [1.0]
