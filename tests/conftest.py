from __future__ import annotations

import os
import sys
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

REPO_ROOT = Path(__file__).resolve().parents[1]
SRC_PATH = REPO_ROOT / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))

# Must be set before the first get_settings() call.
os.environ.setdefault("PUBLIC_BASE_URL", "https://relay.example.test")
os.environ.setdefault("SILENCE_THRESHOLD_SECONDS", "30")
os.environ.setdefault("ASSISTANT_SOURCE", "local")


@pytest.fixture(scope="session")
def app():
    import importlib

    from config.settings import get_settings

    get_settings.cache_clear()
    main = importlib.import_module("main")
    return main.app


@pytest.fixture()
def client(app):
    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()


@pytest.fixture()
def fresh_settings():
    """Clear cached settings around tests that patch the environment."""

    from config.settings import get_settings

    get_settings.cache_clear()
    yield get_settings
    get_settings.cache_clear()
