"""
Unit tests for the reconnect supervisor tick state machine.
"""

import unittest
from unittest.mock import Mock

from locolink.models.connection import AutoReconnectMode, TargetEndpoint
from locolink.services.reconnect_supervisor import ReconnectSupervisor, TickOutcome

from mock_link_server import wait_until


class TestReconnectSupervisorTick(unittest.TestCase):
    """Test single ticks against a mocked client."""

    def setUp(self):
        self.client = Mock()
        self.client.is_connected.return_value = False
        self.client.is_connecting.return_value = False
        self.client.connect.return_value = True
        self.endpoint = TargetEndpoint('192.168.2.6', 9000)
        self.mode = AutoReconnectMode(enabled=True)
        self.supervisor = ReconnectSupervisor(self.client, self.endpoint, self.mode)

    def test_disabled_clears_searching(self):
        self.mode.enabled = False
        self.assertEqual(self.supervisor.tick(), TickOutcome.INACTIVE)
        self.client.set_searching.assert_called_once_with(False)
        self.client.connect.assert_not_called()

    def test_paused_clears_searching(self):
        self.mode.paused = True
        self.assertEqual(self.supervisor.tick(), TickOutcome.INACTIVE)
        self.client.set_searching.assert_called_once_with(False)

    def test_invalid_target_skips(self):
        for host, port in (('', 9000), (None, 9000), ('10.0.0.1', 0), ('10.0.0.1', 65536)):
            self.endpoint.update(host, port)
            self.assertEqual(self.supervisor.tick(), TickOutcome.INVALID_TARGET)
        self.client.connect.assert_not_called()
        self.client.set_searching.assert_not_called()

    def test_connected_skips(self):
        self.client.is_connected.return_value = True
        self.assertEqual(self.supervisor.tick(), TickOutcome.CONNECTED)
        self.client.set_searching.assert_called_once_with(False)
        self.client.connect.assert_not_called()

    def test_attempt_in_flight_skips(self):
        self.client.is_connecting.return_value = True
        self.assertEqual(self.supervisor.tick(), TickOutcome.IN_FLIGHT)
        self.client.connect.assert_not_called()

    def test_starts_attempt(self):
        self.assertEqual(self.supervisor.tick(), TickOutcome.ATTEMPT_STARTED)
        self.client.set_searching.assert_called_once_with(True)
        self.client.connect.assert_called_once_with('192.168.2.6', 9000)

    def test_uses_latest_target(self):
        self.endpoint.update('10.0.0.9', 9100)
        self.supervisor.tick()
        self.client.connect.assert_called_once_with('10.0.0.9', 9100)

    def test_client_error_does_not_escape(self):
        self.client.connect.side_effect = RuntimeError("boom")
        self.assertEqual(self.supervisor.tick(), TickOutcome.FAILED)


class TestReconnectSupervisorLoop(unittest.TestCase):
    """Test the background loop."""

    def setUp(self):
        self.client = Mock()
        self.client.is_connected.return_value = False
        self.client.is_connecting.return_value = False
        self.supervisor = ReconnectSupervisor(
            self.client, TargetEndpoint('127.0.0.1', 9000),
            AutoReconnectMode(enabled=True), interval=0.02
        )

    def tearDown(self):
        self.supervisor.stop()

    def test_first_tick_is_immediate(self):
        self.supervisor.interval = 10.0
        self.supervisor.start()
        self.assertTrue(wait_until(lambda: self.client.connect.called, timeout=1.0))

    def test_ticks_repeat_until_stopped(self):
        self.supervisor.start()
        self.assertTrue(self.supervisor.is_running())
        self.assertTrue(wait_until(lambda: self.supervisor.ticks >= 3))

        self.supervisor.stop()
        self.assertFalse(self.supervisor.is_running())
        ticks = self.supervisor.ticks
        self.assertFalse(wait_until(lambda: self.supervisor.ticks > ticks, timeout=0.1))

    def test_restart_keeps_single_thread(self):
        self.supervisor.start()
        self.supervisor.start()
        self.assertTrue(self.supervisor.is_running())
        self.supervisor.stop()
        self.assertFalse(self.supervisor.is_running())


if __name__ == '__main__':
    unittest.main()
