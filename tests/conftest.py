"""
Pytest configuration and shared fixtures
"""
import os
import queue
import sys

import pytest

# Add src to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from discovery_listener.config import ListenerConfig  # noqa: E402


REGISTER_ENV_KEYS = [
    'REGISTER_SCHEME',
    'REGISTER_HOST',
    'REGISTER_PORT',
    'REGISTER_USER',
    'REGISTER_PASSWORD',
    'REGISTER_CLIENT_ID',
    'REGISTER_QOS',
    'REGISTER_KEEP_ALIVE',
    'REGISTER_TOPIC',
    'REGISTER_PROTOCOL_GROUP',
    'CONN_ESTABLISHING_RETRY',
    'CONN_RETRY_INTERVAL',
    'CONN_TIMEOUT',
    'DISCONNECT_QUIESCE_MS',
    'DEVICE_CHANNEL_SIZE',
]


@pytest.fixture
def clean_env(monkeypatch):
    """Remove every listener variable from the environment"""
    for key in REGISTER_ENV_KEYS:
        monkeypatch.delenv(key, raising=False)
    return monkeypatch


@pytest.fixture
def mock_env(clean_env):
    """Set up mock environment variables"""
    env_vars = {
        'REGISTER_HOST': 'test.mqtt.local',
        'REGISTER_PORT': '1883',
        'REGISTER_USER': 'register',
        'REGISTER_PASSWORD': 'secret',
        'REGISTER_TOPIC': 'DataTopic/register',
    }

    for key, value in env_vars.items():
        clean_env.setenv(key, value)

    return env_vars


def make_config(**overrides) -> ListenerConfig:
    values = dict(
        scheme='tcp',
        host='localhost',
        port=1883,
        username='register',
        password='pw',
        client_id='discovery-test',
        qos=1,
        keepalive_s=60,
        topic='DataTopic/register',
        protocol_group='mqtt',
        retry_count=3,
        retry_interval_s=0.0,
        connect_timeout_s=1.0,
        quiesce_ms=100,
        channel_size=10,
        agent_version='1.0.0-test',
    )
    values.update(overrides)
    return ListenerConfig(**values)


@pytest.fixture
def listener_config():
    """Listener config with no retry delay and short timeouts"""
    return make_config()


@pytest.fixture
def device_queue():
    """Output channel shared by decoder and test"""
    return queue.Queue(maxsize=10)


@pytest.fixture
def sample_register():
    """Well-formed register announcement"""
    return {
        'name': 'd1',
        'description': 'desc',
        'protocols': {'mqtt': {'topic': 't1'}},
        'labels': ['a', 'b'],
    }


@pytest.fixture
def config_factory():
    """Build a ListenerConfig with test defaults and keyword overrides"""
    return make_config
