#!/usr/bin/env python3
"""
Tests for the QLab OSC request/reply coordinator.

Most tests patch ``_transmit`` and feed replies straight into the
dispatcher handler, so no sockets are involved. One loopback test runs a
real python-osc server standing in for QLab.

Run with:
    python -m pytest tests/test_controller.py -v
"""

import json
import os
import sys
import threading
import unittest
from unittest.mock import MagicMock, patch

_REPO_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if _REPO_ROOT not in sys.path:
    sys.path.insert(0, _REPO_ROOT)

from pythonosc.dispatcher import Dispatcher
from pythonosc.osc_message_builder import OscMessageBuilder
from pythonosc.osc_server import ThreadingOSCUDPServer

from qlab_controls.controller import RETRY_BACKOFF, QLabController
from qlab_controls.replies import ReplyKind


def _payload(address, data="ok", status="ok", workspace_id="WS-1"):
    return json.dumps({"workspace_id": workspace_id, "address": address,
                       "status": status, "data": data})


def _make_controller(responder=None, **kwargs):
    """Controller whose _transmit hands each request to ``responder``.

    ``responder(ctrl, address, args)`` may call ``ctrl._handle_message`` to
    answer; returning without doing so simulates a lost reply.
    """
    kwargs.setdefault("timeout", 0.05)
    ctrl = QLabController(**kwargs)

    def transmit(address, args):
        if responder is not None:
            responder(ctrl, address, args)

    ctrl._transmit = MagicMock(side_effect=transmit)
    return ctrl


def _echo(data="ok"):
    def responder(ctrl, address, args):
        ctrl._handle_message("/reply" + address, _payload(address, data))
    return responder


# ---------------------------------------------------------------------------
# Request / reply
# ---------------------------------------------------------------------------

class TestRequestReply(unittest.TestCase):

    def test_reply_is_routed_to_waiter(self):
        ctrl = _make_controller(_echo("5.4.1"))
        reply = ctrl.send_with_retry("/version")
        self.assertTrue(reply.ok)
        self.assertEqual(reply.data, "5.4.1")
        self.assertEqual(reply.workspace_id, "WS-1")
        self.assertEqual(ctrl.pending_requests(), 0)

    def test_workspace_prefix_applied(self):
        ctrl = _make_controller(_echo([]))
        ctrl.set_workspace_id("WS-1")
        ctrl.send_with_retry("/cueLists")
        ctrl._transmit.assert_called_once_with("/workspace/WS-1/cueLists", [])

    def test_app_level_address_not_prefixed(self):
        ctrl = _make_controller(_echo())
        ctrl.set_workspace_id("WS-1")
        ctrl.send_with_retry("/connect", "1234")
        ctrl._transmit.assert_called_once_with("/connect", ["1234"])

    def test_app_level_reply_under_workspace_prefix(self):
        def responder(ctrl, address, args):
            ctrl._handle_message("/reply/workspace/WS-1" + address, _payload(address, "ok"))

        reply = _make_controller(responder).send_with_retry("/connect")
        self.assertTrue(reply.ok)

    def test_error_status(self):
        def responder(ctrl, address, args):
            ctrl._handle_message("/reply" + address, _payload(address, None, status="error"))

        reply = _make_controller(responder).send_with_retry("/new", "bogus")
        self.assertEqual(reply.kind, ReplyKind.PROTOCOL)

    def test_badpass(self):
        reply = _make_controller(_echo("badpass")).send_with_retry("/connect", "nope")
        self.assertEqual(reply.kind, ReplyKind.AUTH)

    def test_non_string_payload(self):
        def responder(ctrl, address, args):
            ctrl._handle_message("/reply" + address, 42)

        reply = _make_controller(responder).send_with_retry("/version")
        self.assertEqual(reply.kind, ReplyKind.PROTOCOL)


# ---------------------------------------------------------------------------
# Timeouts and retries
# ---------------------------------------------------------------------------

class TestTimeouts(unittest.TestCase):

    def test_timeout_returns_reply_value(self):
        ctrl = _make_controller()
        reply = ctrl.send_with_retry("/version")
        self.assertTrue(reply.timed_out)
        self.assertEqual(reply.error, "timeout waiting for reply from QLab")
        self.assertEqual(ctrl.pending_requests(), 0)
        self.assertEqual(ctrl.consecutive_errors, 1)

    @patch("qlab_controls.controller.time.sleep")
    def test_retries_with_backoff(self, mock_sleep):
        ctrl = _make_controller(max_retries=2)
        reply = ctrl.send_with_retry("/version")
        self.assertTrue(reply.timed_out)
        self.assertEqual(ctrl._transmit.call_count, 3)
        self.assertEqual(mock_sleep.call_count, 2)
        mock_sleep.assert_called_with(RETRY_BACKOFF)

    @patch("qlab_controls.controller.time.sleep")
    def test_retry_succeeds(self, mock_sleep):
        attempts = []

        def responder(ctrl, address, args):
            attempts.append(address)
            if len(attempts) == 2:
                ctrl._handle_message("/reply" + address, _payload(address, "5.4.1"))

        ctrl = _make_controller(responder)
        reply = ctrl.send_with_retry("/version", max_retries=3)
        self.assertTrue(reply.ok)
        self.assertEqual(len(attempts), 2)
        self.assertEqual(ctrl.consecutive_errors, 0)

    def test_success_resets_error_count(self):
        ctrl = _make_controller()
        ctrl.send_with_retry("/version")
        ctrl._transmit.side_effect = lambda address, args: ctrl._handle_message(
            "/reply" + address, _payload(address))
        ctrl.send_with_retry("/version")
        self.assertEqual(ctrl.consecutive_errors, 0)
        self.assertTrue(ctrl.was_connected)


class TestDisconnectDetection(unittest.TestCase):

    def test_fires_once_after_threshold(self):
        on_disconnect = MagicMock()
        replying = {"on": True}

        def responder(ctrl, address, args):
            if replying["on"]:
                ctrl._handle_message("/reply" + address, _payload(address))

        ctrl = _make_controller(responder, on_disconnect=on_disconnect)
        self.assertTrue(ctrl.send_with_retry("/version").ok)

        replying["on"] = False
        ctrl.send_with_retry("/version")
        on_disconnect.assert_not_called()
        ctrl.send_with_retry("/version")
        on_disconnect.assert_called_once_with()
        ctrl.send_with_retry("/version")
        on_disconnect.assert_called_once_with()
        self.assertFalse(ctrl.was_connected)

    def test_never_connected(self):
        on_disconnect = MagicMock()
        ctrl = _make_controller(on_disconnect=on_disconnect)
        for _ in range(3):
            ctrl.send_with_retry("/version")
        on_disconnect.assert_not_called()


# ---------------------------------------------------------------------------
# Inbound routing
# ---------------------------------------------------------------------------

class TestRouting(unittest.TestCase):

    def test_oldest_waiter_wins(self):
        ctrl = _make_controller()
        first = ctrl._register("/reply/version")
        second = ctrl._register("/reply/version")

        ctrl._handle_message("/reply/version", _payload("/version", "a"))
        self.assertTrue(first.event.is_set())
        self.assertFalse(second.event.is_set())
        self.assertEqual(first.reply.data, "a")

        ctrl._handle_message("/reply/version", _payload("/version", "b"))
        self.assertEqual(second.reply.data, "b")
        self.assertEqual(ctrl.pending_requests(), 0)

    def test_reply_without_waiter_is_ignored(self):
        ctrl = _make_controller()
        ctrl._handle_message("/reply/version", _payload("/version"))
        self.assertEqual(ctrl.pending_requests(), 0)

    def test_update_goes_to_callback(self):
        on_update = MagicMock()
        ctrl = _make_controller(on_update=on_update)
        waiter = ctrl._register("/reply/version")
        ctrl._handle_message("/update/workspace/WS-1/cue_id/C-1", "x")
        on_update.assert_called_once_with("/update/workspace/WS-1/cue_id/C-1", ["x"])
        self.assertFalse(waiter.event.is_set())

    def test_unsolicited_message_is_ignored(self):
        ctrl = _make_controller()
        waiter = ctrl._register("/reply/version")
        ctrl._handle_message("/version", "x")
        self.assertFalse(waiter.event.is_set())

    def test_reply_matches(self):
        self.assertTrue(QLabController._reply_matches("/reply/connect", "/reply/connect"))
        self.assertTrue(QLabController._reply_matches("/reply/connect", "/reply/workspace/W/connect"))
        self.assertFalse(QLabController._reply_matches("/reply/connect", "/reply/workspace/W/version"))
        self.assertFalse(QLabController._reply_matches("/reply/connect", "/reply/version"))

    def test_shutdown_releases_waiters(self):
        ctrl = _make_controller()
        waiter = ctrl._register("/reply/version")
        ctrl.shutdown()
        self.assertTrue(waiter.event.is_set())
        self.assertIsNone(waiter.reply)
        self.assertEqual(ctrl.pending_requests(), 0)


# ---------------------------------------------------------------------------
# Dry run
# ---------------------------------------------------------------------------

class TestDryRun(unittest.TestCase):

    def test_new_returns_synthetic_id(self):
        ctrl = _make_controller(dry_run=True)
        ctrl.set_workspace_id("WS-1")
        reply = ctrl.send_with_retry("/new", "audio")
        self.assertTrue(reply.ok)
        self.assertRegex(reply.data, r"^DRYRUN-[0-9A-F]{8}$")
        ctrl._transmit.assert_not_called()

    def test_property_write_is_local(self):
        ctrl = _make_controller(dry_run=True)
        ctrl.set_workspace_id("WS-1")
        reply = ctrl.send_with_retry("/cue_id/C-1/name", "Intro")
        self.assertEqual(reply.data, "ok")
        ctrl._transmit.assert_not_called()

    def test_reads_still_go_out(self):
        ctrl = _make_controller(_echo([]), dry_run=True)
        ctrl.set_workspace_id("WS-1")
        self.assertEqual(ctrl.send_with_retry("/cueLists").data, [])
        self.assertEqual(ctrl.send_with_retry("/cue_id/C-1/name").data, [])
        self.assertEqual(ctrl._transmit.call_count, 2)

    def test_fire_and_forget_write_is_suppressed(self):
        ctrl = _make_controller(dry_run=True)
        ctrl.send("/delete_id/C-1")
        ctrl._transmit.assert_not_called()
        ctrl.send("/version")
        ctrl._transmit.assert_called_once_with("/version", [])


# ---------------------------------------------------------------------------
# Loopback
# ---------------------------------------------------------------------------

class TestLoopback(unittest.TestCase):
    """Round trip through real UDP sockets on localhost."""

    def setUp(self):
        dispatcher = Dispatcher()
        dispatcher.map("/version", self._answer, needs_reply_address=True)
        self.qlab = ThreadingOSCUDPServer(("127.0.0.1", 0), dispatcher)
        self.qlab_thread = threading.Thread(target=self.qlab.serve_forever, daemon=True)
        self.qlab_thread.start()
        self.ctrl = QLabController("127.0.0.1", self.qlab.server_address[1],
                                   timeout=2.0, listen_host="127.0.0.1")

    def tearDown(self):
        self.ctrl.shutdown()
        self.qlab.shutdown()
        self.qlab.server_close()

    def _answer(self, client_address, address, *args):
        builder = OscMessageBuilder(address="/reply" + address)
        builder.add_arg(_payload(address, "5.4.1"))
        self.qlab.socket.sendto(builder.build().dgram, client_address)

    def test_reply_returns_to_sending_port(self):
        with self.ctrl:
            reply = self.ctrl.send_with_retry("/version")
            self.assertTrue(self.ctrl.running)
        self.assertTrue(reply.ok)
        self.assertEqual(reply.data, "5.4.1")
        self.assertFalse(self.ctrl.running)


if __name__ == "__main__":
    unittest.main()
