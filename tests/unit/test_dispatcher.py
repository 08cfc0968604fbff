"""
Unit tests for the dispatcher, driven synchronously through the harness.
"""

import json
import logging
import threading
import time

import pytest

from chatserver.routing import (
    ClientJoined,
    ClientLeft,
    Dispatcher,
    Frame,
    LeaveReason,
    SessionState,
)

from conftest import RecordingWriter


class TestRegister:
    """Tests for REG."""

    def test_first_registration_gets_roster(self, harness):
        alice = harness.connect()
        harness.send(alice, "REG", "alice")

        assert harness.take(alice) == ["1 [alice]"]
        assert harness.registry.get(alice).state is SessionState.REGISTERED

    def test_join_is_announced_to_others(self, harness):
        alice = harness.register("alice")
        bob = harness.connect()

        harness.send(bob, "REG", "bob")

        assert harness.take(bob) == ["2 [alice bob]"]
        assert harness.take(alice) == ["bob has joined the chat"]

    def test_unregistered_peers_hear_nothing(self, harness):
        lurker = harness.connect()
        harness.register("alice")

        assert harness.take(lurker) == []

    def test_name_taken(self, harness):
        alice = harness.register("alice")
        other = harness.connect()

        harness.send(other, "REG", "alice")

        assert harness.take(other) == ["ERR 0"]
        assert harness.take(alice) == []
        assert harness.registry.get(other).state is SessionState.UNREGISTERED

    def test_name_too_long(self, harness):
        client = harness.connect()
        harness.send(client, "REG", "a" * 21)
        assert harness.take(client) == ["ERR 1"]

    def test_name_at_limit(self, harness):
        client = harness.connect()
        harness.send(client, "REG", "a" * 20)
        assert harness.take(client) == ["1 [" + "a" * 20 + "]"]

    def test_name_length_counts_bytes(self, harness):
        """Eleven two-byte characters are 22 octets."""
        client = harness.connect()
        harness.send(client, "REG", "é" * 11)
        assert harness.take(client) == ["ERR 1"]

    def test_name_with_space(self, harness):
        client = harness.connect()
        harness.send(client, "REG", "al ice")
        assert harness.take(client) == ["ERR 2"]

    def test_name_with_tab(self, harness):
        client = harness.connect()
        harness.send(client, "REG", "al\tice")
        assert harness.take(client) == ["ERR 2"]

    def test_name_with_unicode_space(self, harness):
        """Any Unicode whitespace counts as a space, not only ASCII 0x20."""
        client = harness.connect()
        harness.send(client, "REG", "al\u00a0ice")
        assert harness.take(client) == ["ERR 2"]

    def test_long_name_with_space_reports_length(self, harness):
        client = harness.connect()
        harness.send(client, "REG", "a very long name with spaces")
        assert harness.take(client) == ["ERR 1"]

    def test_trailing_whitespace_is_trimmed(self, harness):
        client = harness.connect()
        harness.send(client, "REG", "alice  ")
        assert harness.take(client) == ["1 [alice]"]

    def test_empty_name(self, harness):
        client = harness.connect()
        harness.send(client, "REG", "")
        assert harness.take(client) == ["ERR 4"]

    def test_reregister_rejected(self, harness):
        alice = harness.register("alice")
        harness.send(alice, "REG", "alicia")

        assert harness.take(alice) == ["ERR 4"]
        assert harness.registry.roster() == ["alice"]

    def test_retry_after_error(self, harness):
        harness.register("alice")
        client = harness.connect()

        harness.send(client, "REG", "alice")
        harness.send(client, "REG", "alice2")

        assert harness.take(client) == ["ERR 0", "2 [alice alice2]"]

    def test_names_are_case_sensitive(self, harness):
        harness.register("alice")
        client = harness.connect()

        harness.send(client, "REG", "Alice")

        assert harness.take(client) == ["2 [alice Alice]"]


class TestBroadcast:
    """Tests for MESG."""

    def test_message_reaches_everyone_but_sender(self, harness):
        alice = harness.register("alice")
        bob = harness.register("bob")
        carol = harness.register("carol")
        harness.take_all()

        harness.send(alice, "MESG", "hi all")

        assert harness.take(alice) == []
        assert harness.take(bob) == ["alice: hi all"]
        assert harness.take(carol) == ["alice: hi all"]

    def test_body_is_preserved(self, harness):
        alice = harness.register("alice")
        bob = harness.register("bob")

        harness.send(alice, "MESG", "  spaced   out  ")

        assert harness.take(bob) == ["alice:   spaced   out  "]

    def test_empty_body(self, harness):
        alice = harness.register("alice")
        bob = harness.register("bob")

        harness.send(alice, "MESG", "")

        assert harness.take(bob) == ["alice: "]

    def test_alone_in_room(self, harness):
        alice = harness.register("alice")
        harness.send(alice, "MESG", "anyone?")
        assert harness.take(alice) == []

    def test_unregistered_sender_rejected(self, harness):
        alice = harness.register("alice")
        client = harness.connect()

        harness.send(client, "MESG", "hello")

        assert harness.take(client) == ["ERR 4"]
        assert harness.take(alice) == []


class TestPrivateMessage:
    """Tests for PMSG."""

    def test_delivered_to_recipient_only(self, harness):
        alice = harness.register("alice")
        bob = harness.register("bob")
        carol = harness.register("carol")
        harness.take_all()

        harness.send(alice, "PMSG", "bob psst")

        assert harness.take(bob) == ["Private message from alice: psst"]
        assert harness.take(alice) == []
        assert harness.take(carol) == []

    def test_body_keeps_inner_whitespace(self, harness):
        alice = harness.register("alice")
        bob = harness.register("bob")

        harness.send(alice, "PMSG", "bob   two  words")

        assert harness.take(bob) == ["Private message from alice: two  words"]

    def test_unknown_recipient(self, harness):
        alice = harness.register("alice")

        harness.send(alice, "PMSG", "zed hello")

        assert harness.take(alice) == ["ERR 3"]

    def test_missing_recipient(self, harness):
        alice = harness.register("alice")
        harness.send(alice, "PMSG", "")
        assert harness.take(alice) == ["ERR 3"]

    def test_to_self(self, harness):
        alice = harness.register("alice")
        harness.send(alice, "PMSG", "alice note to self")
        assert harness.take(alice) == ["Private message from alice: note to self"]

    def test_unregistered_sender_rejected(self, harness):
        harness.register("bob")
        client = harness.connect()

        harness.send(client, "PMSG", "bob hi")

        assert harness.take(client) == ["ERR 4"]

    def test_unregistered_recipient_is_unknown(self, harness):
        """Only registered names can be addressed."""
        alice = harness.register("alice")
        harness.connect()

        harness.send(alice, "PMSG", "bob hi")

        assert harness.take(alice) == ["ERR 3"]


class TestExit:
    """Tests for EXIT."""

    def test_registered_exit(self, harness):
        alice = harness.register("alice")
        bob = harness.register("bob")
        harness.take_all()

        harness.send(alice, "EXIT")

        assert harness.take(alice) == ["1 [bob]"]
        assert harness.take(bob) == ["alice has left the chat"]
        assert harness.writers[alice].closed
        assert harness.registry.get(alice).state is SessionState.CLOSED
        assert not harness.registry.is_taken("alice")

    def test_last_one_out(self, harness):
        alice = harness.register("alice")
        harness.send(alice, "EXIT")
        assert harness.take(alice) == ["0 []"]

    def test_unregistered_exit_is_silent(self, harness):
        alice = harness.register("alice")
        client = harness.connect()

        harness.send(client, "EXIT")

        assert harness.take(client) == []
        assert harness.take(alice) == []
        assert harness.writers[client].closed

    def test_frames_after_exit_are_ignored(self, harness):
        alice = harness.register("alice")
        bob = harness.register("bob")
        harness.send(alice, "EXIT")
        harness.take_all()

        harness.send(alice, "MESG", "still here?")
        harness.send(alice, "REG", "alice")
        harness.send(alice, "BOGUS")

        assert harness.writers[alice].sent == []
        assert harness.take(bob) == []

    def test_name_is_free_after_exit(self, harness):
        alice = harness.register("alice")
        harness.send(alice, "EXIT")

        again = harness.connect()
        harness.send(again, "REG", "alice")

        assert harness.take(again) == ["1 [alice]"]

    def test_later_client_left_only_removes(self, harness):
        alice = harness.register("alice")
        bob = harness.register("bob")
        harness.send(alice, "EXIT")
        harness.take_all()

        harness.dispatcher.handle(ClientLeft(alice, LeaveReason.PEER_CLOSED))

        assert alice not in harness.registry
        assert harness.take(bob) == []


class TestUnknownCommand:
    """Tests for unrecognised input."""

    @pytest.mark.parametrize("command", ["", "HELLO", "reg", "Mesg"])
    def test_unknown_command(self, harness, command):
        client = harness.connect()
        harness.send(client, command, "whatever")
        assert harness.take(client) == ["ERR 4"]

    def test_registered_client_unknown_command(self, harness):
        alice = harness.register("alice")
        bob = harness.register("bob")
        harness.take_all()

        harness.send(alice, "SHOUT", "hi")

        assert harness.take(alice) == ["ERR 4"]
        assert harness.take(bob) == []


class TestDeparture:
    """Tests for ClientJoined/ClientLeft bookkeeping."""

    def test_abrupt_disconnect_is_announced(self, harness):
        alice = harness.register("alice")
        bob = harness.register("bob")
        harness.take_all()

        harness.dispatcher.handle(ClientLeft(alice, LeaveReason.READ_FAILED))

        assert harness.take(bob) == ["alice has left the chat"]
        assert alice not in harness.registry
        assert harness.writers[alice].closed
        assert not harness.registry.is_taken("alice")

    def test_unregistered_disconnect_is_silent(self, harness):
        alice = harness.register("alice")
        client = harness.connect()

        harness.dispatcher.handle(ClientLeft(client))

        assert harness.take(alice) == []
        assert client not in harness.registry

    def test_duplicate_client_left_is_ignored(self, harness):
        alice = harness.register("alice")
        bob = harness.register("bob")
        harness.take_all()

        harness.dispatcher.handle(ClientLeft(alice, LeaveReason.WRITE_FAILED))
        harness.dispatcher.handle(ClientLeft(alice, LeaveReason.PEER_CLOSED))

        assert harness.take(bob) == ["alice has left the chat"]

    def test_frame_for_unknown_handle_is_dropped(self, harness):
        bob = harness.register("bob")
        harness.send(999, "MESG", "ghost")
        assert harness.take(bob) == []

    def test_duplicate_join_is_ignored(self, harness):
        alice = harness.register("alice")
        impostor = RecordingWriter(alice)

        harness.dispatcher.handle(ClientJoined(alice, impostor))

        assert harness.registry.get(alice).writer is harness.writers[alice]
        assert harness.registry.get(alice).is_registered

    def test_unknown_event_type_raises(self, harness):
        with pytest.raises(TypeError):
            harness.dispatcher.handle("not an event")

    def test_rejoin_announces_again(self, harness):
        alice = harness.register("alice")
        bob = harness.register("bob")
        harness.dispatcher.handle(ClientLeft(bob))
        harness.take_all()

        bob2 = harness.connect()
        harness.send(bob2, "REG", "bob")

        assert harness.take(alice) == ["bob has joined the chat"]
        assert harness.take(bob2) == ["2 [alice bob]"]


class TestAccessLog:
    """The dispatcher logs one line per frame."""

    def test_logs_outcome_and_fanout(self, harness, caplog):
        alice = harness.register("alice")
        harness.register("bob")
        harness.register("carol")

        with caplog.at_level(logging.INFO, logger="chatserver.access"):
            harness.send(alice, "MESG", "secret body")

        entries = [r.getMessage() for r in caplog.records if r.name == "chatserver.access"]
        assert len(entries) == 1
        assert entries[0].startswith(f"#{alice}/alice MESG ok recipients=2 ")
        assert "secret body" not in entries[0]

    def test_logs_error_code(self, harness, caplog):
        client = harness.connect()

        with caplog.at_level(logging.INFO, logger="chatserver.access"):
            harness.send(client, "NOPE")

        entries = [r.getMessage() for r in caplog.records if r.name == "chatserver.access"]
        assert entries[0].startswith(f"#{client} unknown ERR 4 recipients=1 ")

    def test_unknown_token_is_not_logged_verbatim(self, harness, caplog):
        """A client cannot smuggle text into the log through the command token."""
        client = harness.connect()
        forged = "X\r#99/admin EXIT ok recipients=0 0.01ms" + "Z" * 4000

        with caplog.at_level(logging.INFO, logger="chatserver.access"):
            harness.send(client, forged, "tail")

        entries = [r.getMessage() for r in caplog.records if r.name == "chatserver.access"]
        assert len(entries) == 1
        assert "admin" not in entries[0]
        assert "\r" not in entries[0]
        assert entries[0].startswith(f"#{client} unknown ERR 4 ")

    def test_json_format(self, caplog):
        dispatcher = Dispatcher(queue_size=4, log_format="json")
        dispatcher.handle(ClientJoined(1, RecordingWriter(1)))

        with caplog.at_level(logging.INFO, logger="chatserver.access"):
            dispatcher.handle(Frame(1, "REG", "alice"))

        entries = [r.getMessage() for r in caplog.records if r.name == "chatserver.access"]
        entry = json.loads(entries[-1])
        assert entry["handle"] == 1
        assert entry["name"] == "alice"
        assert entry["command"] == "REG"
        assert entry["outcome"] == "ok"
        assert entry["recipients"] == 1


class TestThreadedDispatcher:
    """Tests for the queue-driven run loop."""

    def _wait_for(self, predicate, timeout=2.0):
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            if predicate():
                return True
            time.sleep(0.01)
        return predicate()

    def test_events_are_applied_in_order(self):
        dispatcher = Dispatcher(queue_size=4, poll_interval=0.05)
        dispatcher.start()
        alice, bob = RecordingWriter(1), RecordingWriter(2)

        try:
            assert dispatcher.post(ClientJoined(1, alice))
            assert dispatcher.post(ClientJoined(2, bob))
            assert dispatcher.post(Frame(1, "REG", "alice"))
            assert dispatcher.post(Frame(2, "REG", "bob"))
            for i in range(10):
                assert dispatcher.post(Frame(1, "MESG", str(i)))

            assert self._wait_for(lambda: len(bob.sent) == 11)
        finally:
            dispatcher.close()
            dispatcher.join(timeout=2.0)

        assert bob.sent == ["2 [alice bob]"] + [f"alice: {i}" for i in range(10)]
        assert not dispatcher.is_alive()

    def test_close_drains_then_closes_writers(self):
        dispatcher = Dispatcher(queue_size=8, poll_interval=0.05)
        writer = RecordingWriter(1)
        dispatcher.post(ClientJoined(1, writer))
        dispatcher.post(Frame(1, "REG", "alice"))

        dispatcher.start()
        dispatcher.close()
        dispatcher.join(timeout=2.0)

        assert writer.sent == ["1 [alice]"]
        assert writer.closed
        assert len(dispatcher.registry) == 0

    def test_post_after_close_returns_false(self):
        dispatcher = Dispatcher(queue_size=2, poll_interval=0.05)
        dispatcher.start()
        dispatcher.close()
        dispatcher.join(timeout=2.0)

        assert dispatcher.is_closed
        assert dispatcher.post(ClientLeft(1)) is False

    def test_close_is_idempotent(self):
        dispatcher = Dispatcher(queue_size=2, poll_interval=0.05)
        dispatcher.start()
        dispatcher.close()
        dispatcher.close()
        dispatcher.join(timeout=2.0)
        assert not dispatcher.is_alive()

    def test_close_without_start_on_full_queue(self):
        """close() must not hang when nobody is consuming."""
        dispatcher = Dispatcher(queue_size=1, poll_interval=0.05)
        dispatcher.post(ClientJoined(1, RecordingWriter(1)))

        dispatcher.close()

        assert dispatcher.is_closed

    def test_blocked_producer_released_by_close(self):
        """A producer parked on a full queue gets False once closed."""
        dispatcher = Dispatcher(queue_size=1, poll_interval=0.05)
        dispatcher.post(ClientJoined(1, RecordingWriter(1)))
        results = []

        producer = threading.Thread(
            target=lambda: results.append(dispatcher.post(ClientJoined(2, RecordingWriter(2))))
        )
        producer.start()
        time.sleep(0.1)
        assert results == []

        dispatcher.close()
        producer.join(timeout=2.0)

        assert results == [False]

    def test_bad_event_does_not_stop_loop(self):
        dispatcher = Dispatcher(queue_size=4, poll_interval=0.05)
        writer = RecordingWriter(1)
        dispatcher.start()

        try:
            dispatcher.post("garbage")
            dispatcher.post(ClientJoined(1, writer))
            dispatcher.post(Frame(1, "REG", "alice"))
            assert self._wait_for(lambda: writer.sent == ["1 [alice]"])
        finally:
            dispatcher.close()
            dispatcher.join(timeout=2.0)

        assert dispatcher.events_failed == 1
