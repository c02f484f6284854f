"""Unit tests for MQTT broadcaster.

Tests MQTTBroadcaster and NoOpBroadcaster implementations.
Requires MQTT broker running on localhost:1883 for the live MQTTBroadcaster tests.
"""

import json
import socket
from unittest.mock import MagicMock, patch
from uuid import uuid4

import pytest

from scan_scheduler import mqtt as mqtt_module
from scan_scheduler.mqtt import (
    MQTTBroadcaster,
    NoOpBroadcaster,
    get_broadcaster,
    reset_broadcaster_after_fork,
    shutdown_broadcaster,
)


# ============================================================================
# Helper Functions
# ============================================================================

def is_mqtt_running(host="localhost", port=1883, timeout=2):
    """Check if MQTT broker is running on specified host:port."""
    try:
        with socket.create_connection((host, port), timeout=timeout):
            return True
    except OSError:
        return False


def skip_if_no_mqtt():
    """Skip the current test if MQTT is not running."""
    if not is_mqtt_running():
        pytest.skip("MQTT broker not running on localhost:1883")


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def test_topic():
    """Generate unique test topic for each test."""
    return f"test/scans/{uuid4()}"


@pytest.fixture
def mqtt_broadcaster(test_topic):
    """Create MQTTBroadcaster instance against a live broker."""
    skip_if_no_mqtt()
    broadcaster = MQTTBroadcaster(broker="localhost", port=1883, topic=test_topic)
    yield broadcaster
    broadcaster.disconnect()


@pytest.fixture
def mock_client():
    """Patch the paho client class and return the client instance."""
    with patch("scan_scheduler.mqtt.mqtt.Client") as mock_client_class:
        client = MagicMock()
        client.publish.return_value.rc = 0
        mock_client_class.return_value = client
        yield client


# ============================================================================
# NoOpBroadcaster Tests (Always Run)
# ============================================================================

class TestNoOpBroadcaster:
    """Test suite for NoOpBroadcaster."""

    def test_connect(self):
        """Test NoOp connect always succeeds."""
        assert NoOpBroadcaster().connect() is True

    def test_disconnect(self):
        """Test NoOp disconnect does nothing."""
        NoOpBroadcaster().disconnect()

    def test_publish_event(self):
        """Test NoOp publish_event always succeeds."""
        result = NoOpBroadcaster().publish_event(
            event_type="enqueued", report=1, data={"start_from": 0}
        )
        assert result is True


# ============================================================================
# MQTTBroadcaster Tests (Mocked Client)
# ============================================================================

class TestMQTTBroadcasterMocked:
    """Test suite for MQTTBroadcaster with the paho client mocked."""

    def test_connect(self, mock_client, test_topic):
        broadcaster = MQTTBroadcaster(broker="broker", port=1884, topic=test_topic)

        assert broadcaster.connect() is True

        mock_client.connect.assert_called_once_with("broker", 1884, keepalive=60)
        mock_client.loop_start.assert_called_once()
        assert broadcaster.connected is True

    def test_connect_failure(self, mock_client, test_topic):
        """Test that an unreachable broker is reported, not raised."""
        mock_client.connect.side_effect = ConnectionRefusedError()
        broadcaster = MQTTBroadcaster(broker="localhost", port=1883, topic=test_topic)

        assert broadcaster.connect() is False
        assert broadcaster.connected is False

    def test_publish_event_payload_format(self, mock_client, test_topic):
        """Test that publish_event sends the queue event as JSON."""
        broadcaster = MQTTBroadcaster(broker="localhost", port=1883, topic=test_topic)
        broadcaster.connect()

        assert broadcaster.publish_event("handler_started", 12, {"handler_pid": 4000}) is True

        topic, payload = mock_client.publish.call_args.args
        assert topic == test_topic
        assert mock_client.publish.call_args.kwargs == {"qos": 1}
        data = json.loads(payload)
        assert data["report"] == 12
        assert data["event_type"] == "handler_started"
        assert data["handler_pid"] == 4000
        assert isinstance(data["timestamp"], int)

    def test_publish_event_without_connection(self, test_topic):
        """Test publish_event fails without connection."""
        broadcaster = MQTTBroadcaster(broker="localhost", port=1883, topic=test_topic)

        assert broadcaster.publish_event(event_type="removed", report=1, data={}) is False

    def test_publish_error_reported(self, mock_client, test_topic):
        mock_client.publish.side_effect = RuntimeError("socket closed")
        broadcaster = MQTTBroadcaster(broker="localhost", port=1883, topic=test_topic)
        broadcaster.connect()

        assert broadcaster.publish_event("removed", 1, {}) is False

    def test_disconnect(self, mock_client, test_topic):
        broadcaster = MQTTBroadcaster(broker="localhost", port=1883, topic=test_topic)
        broadcaster.connect()

        broadcaster.disconnect()

        mock_client.loop_stop.assert_called_once()
        mock_client.disconnect.assert_called_once()
        assert broadcaster.connected is False


# ============================================================================
# MQTTBroadcaster Tests (Require MQTT Broker)
# ============================================================================

class TestMQTTBroadcaster:
    """Test suite for MQTTBroadcaster against a live broker.

    Tests will be skipped if broker is not available.
    """

    def test_connect(self, mqtt_broadcaster):
        """Test connecting to MQTT broker."""
        assert mqtt_broadcaster.connect() is True
        assert mqtt_broadcaster.client is not None

    def test_queue_lifecycle_events(self, mqtt_broadcaster):
        """Test publishing all queue lifecycle events."""
        mqtt_broadcaster.connect()

        events = [
            ("enqueued", {"start_from": 0}),
            ("handler_started", {"handler_pid": 1234}),
            ("requeued", {}),
            ("handler_started", {"handler_pid": 1240}),
            ("removed", {}),
        ]
        for event_type, data in events:
            assert mqtt_broadcaster.publish_event(event_type, 7, data) is True


# ============================================================================
# Global Broadcaster Tests
# ============================================================================

class TestGlobalBroadcaster:
    """Test suite for global broadcaster singleton."""

    def setup_method(self):
        """Ensure clean state before each test."""
        shutdown_broadcaster()

    def teardown_method(self):
        """Cleanup after each test."""
        shutdown_broadcaster()

    def test_get_broadcaster_noop(self):
        """Test getting NoOp broadcaster."""
        broadcaster = get_broadcaster(
            broadcast_type="none", broker="localhost", port=1883, topic="scans/queue"
        )

        assert isinstance(broadcaster, NoOpBroadcaster)

    def test_get_broadcaster_mqtt(self, mock_client):
        broadcaster = get_broadcaster(
            broadcast_type="mqtt", broker="localhost", port=1883, topic="scans/queue"
        )

        assert isinstance(broadcaster, MQTTBroadcaster)
        assert broadcaster.connected is True

    def test_get_broadcaster_singleton(self):
        """Test that get_broadcaster returns same instance for the same config."""
        broadcaster1 = get_broadcaster("none", "localhost", 1883, "scans/queue")
        broadcaster2 = get_broadcaster("none", "localhost", 1883, "scans/queue")

        assert broadcaster1 is broadcaster2

    def test_get_broadcaster_config_change(self, mock_client):
        """Test that a different config replaces and disconnects the old instance."""
        old = get_broadcaster("mqtt", "localhost", 1883, "scans/queue")

        new = get_broadcaster("mqtt", "localhost", 1883, "scans/other")

        assert new is not old
        mock_client.disconnect.assert_called_once()

    def test_shutdown_broadcaster(self):
        """Test shutting down global broadcaster."""
        broadcaster = get_broadcaster("none", "localhost", 1883, "scans/queue")

        shutdown_broadcaster()

        assert get_broadcaster("none", "localhost", 1883, "scans/queue") is not broadcaster

    def test_reset_after_fork_does_not_disconnect(self, mock_client):
        """Test that a forked process drops the inherited client without closing it."""
        inherited = get_broadcaster("mqtt", "localhost", 1883, "scans/queue")

        reset_broadcaster_after_fork()

        assert mqtt_module._broadcaster is None
        mock_client.disconnect.assert_not_called()
        assert get_broadcaster("mqtt", "localhost", 1883, "scans/queue") is not inherited
