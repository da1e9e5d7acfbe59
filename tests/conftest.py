"""
Shared fixtures: settings, a fake remote service, and a wired-up client.
"""

from pathlib import Path

import pytest

from milksync.client import RemoteClient
from milksync.config import Settings
from milksync.local_store import LocalStore
from milksync.retrier import Retrier
from milksync.task_list_model import ListListModel, TaskListModel

from fakes import FakeClock, FakeConnectionManager, FakeService, MemoryTokenStore


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    """Settings with test credentials and a temp cache directory."""
    return Settings(
        api_key="test-key",
        shared_secret="test-secret",
        cache_dir=tmp_path,
        pull_tasks_interval=3600,
        pull_lists_interval=3600,
        merge_batch_size=2,
    )


@pytest.fixture
def store(settings: Settings) -> LocalStore:
    return LocalStore(settings.cache_db_path)


@pytest.fixture
def service() -> FakeService:
    return FakeService()


@pytest.fixture
def token_store() -> MemoryTokenStore:
    return MemoryTokenStore()


@pytest.fixture
def errors() -> list[tuple[str, str]]:
    """Everything routed to the error sink, as (message, label)."""
    return []


@pytest.fixture
def rtm(settings, token_store, store, service, errors) -> RemoteClient:
    return RemoteClient(
        token_store,
        settings,
        store=store,
        http_client=service.client(),
        error_sink=lambda message, label: errors.append((message, label)),
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def connection_manager() -> FakeConnectionManager:
    return FakeConnectionManager()


@pytest.fixture
def task_list_model(store) -> TaskListModel:
    return TaskListModel(store)


@pytest.fixture
def list_list_model(store) -> ListListModel:
    return ListListModel(store)


@pytest.fixture
def retrier(rtm, task_list_model, list_list_model, connection_manager, clock) -> Retrier:
    """Retrier over an online client; authorization is up to each test."""
    rtm.set_network_connectivity(True)
    return Retrier(
        rtm,
        task_list_model,
        list_list_model,
        connection_manager_factory=lambda: connection_manager,
        clock=clock,
    )
