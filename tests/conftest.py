"""
Test Configuration
==================

Pytest configuration with fixtures shared by unit and integration tests.
Provides test settings, a fake upstream transport and engines wired to it.
"""

import pytest

from zpl_render.config.settings import Settings
from zpl_render.core.rendering.engine import RenderEngine
from zpl_render.models.schemas import RenderRequest

from tests.utils.mocks import FakeUpstreamClient, RecordingSleep

PRIMARY_URL = "https://primary.labels.test"
SECONDARY_URL = "https://secondary.labels.test"


def build_settings(**overrides) -> Settings:
    """Settings for tests, never read from the environment's .env file."""
    values = {
        "environment": "testing",
        "log_level": "DEBUG",
        "base_urls": f"{PRIMARY_URL},{SECONDARY_URL}",
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


@pytest.fixture
def test_settings() -> Settings:
    """Test settings fixture."""
    return build_settings()


@pytest.fixture
def fake_client() -> FakeUpstreamClient:
    """Fake upstream that renders every label successfully."""
    return FakeUpstreamClient()


@pytest.fixture
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def engine(test_settings, fake_client, recording_sleep) -> RenderEngine:
    """Engine backed by the fake upstream, with recorded sleeps and zero jitter."""
    return RenderEngine(
        test_settings, client=fake_client, sleep=recording_sleep, rng=lambda: 0.0
    )


@pytest.fixture
def sample_request() -> RenderRequest:
    """4x6 inch, 203 dpi request for a single label."""
    return RenderRequest(zpl="^XA^FO50,50^ADN,36,20^FDLABEL1^FS^XZ")
