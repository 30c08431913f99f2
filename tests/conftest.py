"""
Test Configuration
==================

Pytest configuration with fixtures for all test types.
Provides test settings, deterministic engine fakes and a wired render runtime.
"""

import os
import shutil
import tempfile
from pathlib import Path
from typing import Any, Callable, Dict, Generator, List, Union

# Settings are read at import time by the logging setup
_TEST_STORAGE = tempfile.mkdtemp(prefix="og_image_test_")
os.environ.setdefault("OG_IMAGE_ENVIRONMENT", "testing")
os.environ.setdefault("OG_IMAGE_STORAGE_PATH", _TEST_STORAGE)

import pytest
from fastapi.testclient import TestClient
from pydantic_settings import SettingsConfigDict

from og_image.api.main import create_app
from og_image.config.settings import Settings
from og_image.core.runtime import ImageRuntime, build_runtime
from og_image.models.schemas import EngineKind

from tests.utils.mocks import fake_engines, full_probe, make_loaders


# Test settings override
class TestSettings(Settings):
    """Test-specific settings."""

    environment: str = "testing"
    debug: bool = True
    browser_enabled: bool = True
    default_format: str = "png"
    cache_driver: str = "memory"
    log_level: str = "DEBUG"
    # shipped embedded fonts, so renders never reach the remote font API
    fonts: List[Union[str, Dict[str, Any]]] = [
        {"name": "DejaVu Sans", "weight": 400, "key": "DejaVuSans.ttf"},
        {"name": "DejaVu Sans", "weight": 700, "key": "DejaVuSans-Bold.ttf"},
    ]

    model_config = SettingsConfigDict(env_file=".env.test", env_prefix="OG_IMAGE_")


@pytest.fixture(scope="session", autouse=True)
def cleanup_storage() -> Generator[None, None, None]:
    yield
    shutil.rmtree(_TEST_STORAGE, ignore_errors=True)


@pytest.fixture
def test_settings(tmp_path: Path) -> TestSettings:
    """Test settings fixture."""
    return TestSettings(storage_path=tmp_path / "storage")


@pytest.fixture
def engines() -> Dict[EngineKind, Any]:
    """Fresh fake engines for every test."""
    return fake_engines()


@pytest.fixture
def runtime(test_settings: TestSettings, engines: Dict[EngineKind, Any]) -> ImageRuntime:
    """Render runtime wired to the fake engines."""
    return build_runtime(test_settings, probe=full_probe(), loaders=make_loaders(engines))


@pytest.fixture
def client(test_settings: TestSettings, runtime: ImageRuntime) -> Generator[TestClient, None, None]:
    """FastAPI test client."""
    app = create_app(test_settings, runtime=runtime)
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def make_client(tmp_path: Path) -> Generator[Callable[..., TestClient], None, None]:
    """Factory for clients with custom settings, probes or engines."""
    clients: List[TestClient] = []

    def factory(
        engines: Dict[EngineKind, Any] = None, probe=None, **overrides: Any
    ) -> TestClient:
        overrides.setdefault("storage_path", tmp_path / "storage")
        settings = TestSettings(**overrides)
        runtime = build_runtime(
            settings,
            probe=probe or full_probe(),
            loaders=make_loaders(engines if engines is not None else fake_engines()),
        )
        test_client = TestClient(create_app(settings, runtime=runtime))
        test_client.__enter__()
        clients.append(test_client)
        return test_client

    yield factory
    for test_client in clients:
        test_client.__exit__(None, None, None)
