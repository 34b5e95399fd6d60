from __future__ import annotations

import pathlib
import sys
from typing import Dict

import pytest
from fastapi.testclient import TestClient

sys.path.append(str(pathlib.Path(__file__).resolve().parents[1]))
from app.config import Settings
from app.container import Container, build_container
from app.main import create_app
from app.providers.registry import ProviderRegistry
from app.repositories.memory_store import InMemoryPaymentStore
from app.services.notifications import NotificationService

from fakes import API_TOKEN, Clock, FakeProvider, RecordingSink, make_settings


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def fake_provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def registry(settings: Settings, fake_provider: FakeProvider) -> ProviderRegistry:
    registry = ProviderRegistry(default_provider=settings.payment_provider)
    registry.register("fake", fake_provider)
    return registry


@pytest.fixture
def store() -> InMemoryPaymentStore:
    return InMemoryPaymentStore()


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def container(
    settings: Settings,
    store: InMemoryPaymentStore,
    registry: ProviderRegistry,
    sink: RecordingSink,
) -> Container:
    return build_container(
        settings,
        store=store,
        registry=registry,
        notifications=NotificationService([sink]),
    )


@pytest.fixture
def client(container: Container) -> TestClient:
    return TestClient(create_app(container))


@pytest.fixture
def auth_headers() -> Dict[str, str]:
    return {"Authorization": f"Bearer {API_TOKEN}"}


@pytest.fixture
def clock() -> Clock:
    return Clock()
