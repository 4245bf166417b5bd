"""Test fixtures and mock data for PubSub Feed tests."""

from .mock_data import AUTH_TOKEN, CHANNEL_ID, MockPayloads, fast_config
from .mock_websocket import FakeConnector, FakeWebSocket, wait_until

__all__ = [
    'AUTH_TOKEN',
    'CHANNEL_ID',
    'MockPayloads',
    'fast_config',
    'FakeConnector',
    'FakeWebSocket',
    'wait_until',
]
