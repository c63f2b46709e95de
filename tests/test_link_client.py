"""
Tests for LinkClient.

Most tests use a fake session factory so connection timing is controlled
by the test; the integration class runs real sessions against the mock
TCP peer.
"""

import socket
import threading
import unittest
from unittest.mock import patch

from locolink.core.errors import ConnectionError, ErrorCodes
from locolink.core.events import LinkEvent
from locolink.core.frame_codec import Frame, MAX_PAYLOAD_SIZE, encode_control
from locolink.models.connection import ConnectionState
from locolink.services.configuration_service import LinkConfig
from locolink.services.link_client import LinkClient

from mock_link_server import MockLinkServer, wait_until


UNENCODABLE_HOST = "a" * 64 + ".example"


class FakeSession:
    """Stand-in for ConnectionSession with a test-controlled open()."""

    instances = []

    def __init__(self, host, port, on_frame=None, on_closed=None, on_error=None, read_size=512):
        self.host = host
        self.port = port
        self.on_frame = on_frame
        self.on_closed = on_closed
        self.on_error = on_error
        self.gate = threading.Event()
        self.fail = False
        self.connected = False
        self.alive = True
        self.closed = False
        self.sent = []
        FakeSession.instances.append(self)

    def open(self, timeout=2.0):
        self.gate.wait(5.0)
        if self.fail:
            self.closed = True
            raise ConnectionError(f"Connection to {self.host}:{self.port} failed",
                                  host=self.host, port=self.port)
        self.connected = True

    def is_connected(self):
        return self.connected and not self.closed

    def close(self, timeout=2.0):
        if self.closed:
            return
        was_connected = self.connected
        self.closed = True
        self.gate.set()
        if was_connected and self.on_closed:
            self.on_closed(self)

    def send(self, data):
        if not self.is_connected():
            return False
        self.sent.append(data)
        return True

    def check_alive(self):
        return self.is_connected() and self.alive


class LinkClientTestCase(unittest.TestCase):
    """Client wired to FakeSession with recorded callbacks."""

    def setUp(self):
        FakeSession.instances = []
        self.events = []
        self.lines = []
        self.errors = []
        self.client = LinkClient(
            config=LinkConfig(reconnect_interval=0.05, liveness_interval=60.0),
            session_factory=FakeSession,
            on_connecting_started=lambda: self.events.append('started'),
            on_connecting_stopped=lambda: self.events.append('stopped'),
            on_status_changed=lambda status: self.events.append(status),
            on_telemetry_line=self.lines.append,
            on_error=self.errors.append
        )

    def tearDown(self):
        for session in FakeSession.instances:
            session.gate.set()
        self.client.shutdown()

    def connect_now(self):
        self.assertTrue(self.client.connect('127.0.0.1', 9000))
        session = FakeSession.instances[-1]
        session.gate.set()
        self.assertTrue(wait_until(self.client.is_connected))
        self.client.dispatcher.flush()
        return session


class TestLinkClientConnect(LinkClientTestCase):
    """Test connection lifecycle."""

    def test_successful_connect(self):
        self.connect_now()
        self.assertTrue(wait_until(lambda: 'stopped' in self.events))
        self.client.dispatcher.flush()

        self.assertEqual(self.events, ['started', 'connected', 'stopped'])
        status = self.client.status_model.status
        self.assertEqual(status.state, ConnectionState.CONNECTED)
        self.assertTrue(status.connected)
        self.assertIsNotNone(status.connected_at)

    def test_invalid_endpoint_is_ignored(self):
        self.assertFalse(self.client.connect('', 9000))
        self.assertFalse(self.client.connect('127.0.0.1', 0))
        self.assertFalse(self.client.connect('127.0.0.1', 70000))
        self.assertEqual(FakeSession.instances, [])

    def test_overlapping_connects_create_one_session(self):
        results = []
        threads = [
            threading.Thread(target=lambda: results.append(self.client.connect('127.0.0.1', 9000)))
            for _ in range(8)
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        self.assertEqual(results.count(True), 1)
        self.assertEqual(len(FakeSession.instances), 1)
        self.assertTrue(self.client.is_connecting())

        FakeSession.instances[0].gate.set()
        self.assertTrue(wait_until(self.client.is_connected))
        self.assertFalse(self.client.connect('127.0.0.1', 9000))
        self.assertEqual(len(FakeSession.instances), 1)

    def test_failed_connect_reports_error_and_status(self):
        self.assertTrue(self.client.connect('127.0.0.1', 9000))
        session = FakeSession.instances[0]
        session.fail = True
        session.gate.set()

        self.assertTrue(wait_until(lambda: not self.client.is_connecting()))
        self.client.dispatcher.flush()

        self.assertEqual(len(self.errors), 1)
        self.assertIn('failed', self.errors[0])
        self.assertIn('disconnected', self.events)
        self.assertFalse(self.client.is_connected())
        self.assertEqual(self.client.status_model.status.state, ConnectionState.DISCONNECTED)
        # no auto-connect, so the searching indicator is cleared
        self.assertTrue(wait_until(lambda: not self.client.searching))

    def test_connect_adopts_target_when_unset(self):
        self.client.connect('10.0.0.5', 9001)
        self.assertEqual(self.client.get_target_host(), '10.0.0.5')
        self.assertEqual(self.client.get_target_port(), 9001)

    def test_disconnect_reports_once(self):
        session = self.connect_now()
        self.client.disconnect()
        self.client.disconnect()
        self.client.dispatcher.flush()

        self.assertTrue(session.closed)
        self.assertFalse(self.client.is_connected())
        self.assertEqual(self.events.count('connected'), 1)
        self.assertEqual(self.events.count('disconnected'), 1)
        self.assertEqual(self.client.status_model.status.state, ConnectionState.DISCONNECTED)

    def test_disconnect_cancels_attempt_in_flight(self):
        self.assertTrue(self.client.connect('127.0.0.1', 9000))
        session = FakeSession.instances[0]
        self.client.disconnect()

        self.assertTrue(session.closed)
        self.assertFalse(self.client.is_connecting())
        self.client.dispatcher.flush()
        self.assertNotIn('connected', self.events)

    def test_update_target_keeps_session(self):
        session = self.connect_now()
        self.client.update_target('10.1.1.1', 9100)
        self.assertFalse(session.closed)
        self.assertTrue(self.client.is_connected())
        self.assertEqual(self.client.get_target_host(), '10.1.1.1')


class TestLinkClientTraffic(LinkClientTestCase):
    """Test sending and receiving."""

    def test_send_without_session_is_noop(self):
        self.assertFalse(self.client.send_control(3, 2))
        self.assertEqual(self.errors, [])

    def test_send_control_queues_frame(self):
        session = self.connect_now()
        self.assertTrue(self.client.send_control(3, 2))
        self.assertTrue(self.client.send_control(12, 0))
        self.assertEqual(session.sent, [encode_control(3, 2), encode_control(8, 1)])

    def test_oversized_payload_is_reported(self):
        session = self.connect_now()
        with self.assertLogs('locolink.services.link_client', level='WARNING') as logs:
            self.assertFalse(self.client.send_frame(1, bytes(MAX_PAYLOAD_SIZE + 1)))
        self.assertIn(f"[{ErrorCodes.PAYLOAD_TOO_LARGE}] ProtocolError", logs.output[0])
        self.client.dispatcher.flush()
        self.assertEqual(session.sent, [])
        self.assertEqual(len(self.errors), 1)

    def test_frames_become_telemetry_lines(self):
        session = self.connect_now()
        session.on_frame(Frame(device_id=3, payload=b"\x02", crc=0x0A))
        session.on_frame(Frame(device_id=5, payload=b"\x06", crc=0x00))
        self.client.dispatcher.flush()
        self.assertEqual(self.lines, ["cmd=0x03 loco=3 state=2\n", "cmd=0x05 loco=5 state=6\n"])

    def test_session_error_reaches_callback(self):
        session = self.connect_now()
        session.on_error("TCP RX error: reset")
        self.client.dispatcher.flush()
        self.assertEqual(self.errors, ["TCP RX error: reset"])
        self.assertEqual(self.client.status_model.status.last_error, "TCP RX error: reset")


class TestLinkClientLiveness(LinkClientTestCase):
    """Test zombie handling through the liveness monitor."""

    def test_zombie_session_is_disconnected(self):
        session = self.connect_now()
        self.client.endpoint.update('127.0.0.1', 9000)

        with patch.object(self.client, 'is_endpoint_reachable', return_value=False):
            report = self.client.liveness.check('tick')

        self.assertTrue(report.zombie)
        self.assertTrue(report.forced_disconnect)
        self.assertFalse(report.alive)
        self.assertTrue(session.closed)
        self.assertFalse(self.client.is_connected())
        status = self.client.status_model.status
        self.assertFalse(status.connected)
        self.assertFalse(status.reachable)

    def test_dead_session_is_disconnected(self):
        session = self.connect_now()
        session.alive = False

        with patch.object(self.client, 'is_endpoint_reachable', return_value=True):
            report = self.client.liveness.check('tick')

        self.assertFalse(report.zombie)
        self.assertTrue(report.forced_disconnect)
        self.assertTrue(session.closed)

    def test_healthy_session_is_kept(self):
        session = self.connect_now()
        with patch.object(self.client, 'is_endpoint_reachable', return_value=True):
            report = self.client.liveness.check('tick')
        self.assertTrue(report.alive)
        self.assertFalse(report.forced_disconnect)
        self.assertFalse(session.closed)

    def test_check_alive_without_session(self):
        self.assertFalse(self.client.check_connection_alive())


class TestLinkClientAutoConnect(LinkClientTestCase):
    """Test the auto-connect controls."""

    def test_enable_starts_attempt(self):
        with patch.object(self.client.liveness, 'start'):
            self.client.enable_auto_connect('127.0.0.1', 9000)
            self.assertTrue(wait_until(lambda: len(FakeSession.instances) == 1))
            FakeSession.instances[0].gate.set()
            self.assertTrue(wait_until(self.client.is_connected))

    def test_disable_clears_searching(self):
        with patch.object(self.client.liveness, 'start'):
            self.client.enable_auto_connect('127.0.0.1', 9000)
            self.assertTrue(wait_until(lambda: self.client.searching))
            self.client.disable_auto_connect()
        self.assertFalse(self.client.searching)
        self.assertFalse(self.client.supervisor.is_running())

    def test_pause_stops_new_attempts(self):
        self.client.pause_auto(True)
        with patch.object(self.client.liveness, 'start'):
            self.client.enable_auto_connect('127.0.0.1', 9000)
            self.assertTrue(wait_until(lambda: self.client.supervisor.ticks >= 3))
        self.assertEqual(FakeSession.instances, [])
        self.assertFalse(self.client.searching)


class TestLinkClientReachability(unittest.TestCase):
    """Test the independent reachability probe."""

    def setUp(self):
        self.server = MockLinkServer()
        self.port = self.server.start()
        self.client = LinkClient()

    def tearDown(self):
        self.client.shutdown()
        self.server.stop()

    def test_reachable_endpoint(self):
        self.client.update_target('127.0.0.1', self.port)
        self.assertTrue(self.client.is_endpoint_reachable(600))

    def test_unreachable_endpoint(self):
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        sock.bind(('127.0.0.1', 0))
        port = sock.getsockname()[1]
        sock.close()
        self.client.update_target('127.0.0.1', port)
        self.assertFalse(self.client.is_endpoint_reachable(600))

    def test_invalid_target_is_unreachable(self):
        self.assertFalse(self.client.is_endpoint_reachable(600))

    def test_unencodable_host_is_unreachable(self):
        self.client.update_target(UNENCODABLE_HOST, 9000)
        self.assertFalse(self.client.is_endpoint_reachable(200))

    def test_unencodable_host_fails_attempt(self):
        errors = []
        self.client.dispatcher.register_handler(LinkEvent.ERROR, errors.append)

        self.assertTrue(self.client.connect(UNENCODABLE_HOST, 9000))

        self.assertTrue(wait_until(lambda: not self.client.is_connecting()))
        self.client.dispatcher.flush()
        self.assertFalse(self.client.is_connected())
        self.assertEqual(len(errors), 1)
        self.assertEqual(self.client.status_model.status.state, ConnectionState.DISCONNECTED)


class TestLinkClientIntegration(unittest.TestCase):
    """Real sessions against the mock TCP peer."""

    def setUp(self):
        self.server = MockLinkServer()
        self.port = self.server.start()
        self.lines = []
        self.statuses = []
        self.client = LinkClient(
            config=LinkConfig(reconnect_interval=0.1, liveness_interval=60.0),
            on_telemetry_line=self.lines.append,
            on_status_changed=self.statuses.append
        )
        # keep the reachability probe from showing up as extra peers
        patcher = patch.object(self.client.liveness, 'start')
        patcher.start()
        self.addCleanup(patcher.stop)

    def tearDown(self):
        self.client.shutdown()
        self.server.stop()

    def test_telemetry_and_control_round_trip(self):
        self.client.enable_auto_connect('127.0.0.1', self.port)
        self.assertTrue(wait_until(self.client.is_connected))
        self.assertTrue(self.server.wait_for_client())

        self.server.send(bytes([0x7E, 0x03, 0x00]))
        self.server.send(bytes([0x01, 0x02, 0x0A]))
        self.assertTrue(wait_until(lambda: self.lines == ["cmd=0x03 loco=3 state=2\n"]))

        self.assertTrue(self.client.send_control(1, 5))
        self.assertEqual(self.server.wait_for_bytes(6), bytes([0x7E, 0x01, 0x00, 0x01, 0x05, 0x9A]))

    def test_reconnects_after_peer_drop(self):
        self.client.enable_auto_connect('127.0.0.1', self.port)
        self.assertTrue(wait_until(self.client.is_connected))
        self.assertTrue(self.server.wait_for_client())

        self.server.drop_client()
        self.assertTrue(wait_until(lambda: self.server.connections >= 2, timeout=5.0))
        self.assertTrue(wait_until(self.client.is_connected))
        self.client.dispatcher.flush()
        self.assertEqual(self.statuses[:3], ['connected', 'disconnected', 'connected'])


if __name__ == '__main__':
    unittest.main()
