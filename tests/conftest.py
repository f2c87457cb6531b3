"""Shared test fixtures and configuration.

Provides infrastructure to isolate tests from the real filesystem and backend.
"""

from __future__ import annotations

import logging
from datetime import datetime
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from tasklane.models import Task, TaskScope
from tasklane.services.invalidation import InvalidationChannel
from tasklane.services.mutation_gateway import TaskMutationGateway
from tasklane.services.task_store import TaskStore

NOW = datetime(2024, 6, 12, 9, 30, 0)  # a Wednesday


def make_task(task_id: str = "task-1", **kwargs) -> Task:
    """Build a Task with sensible defaults."""
    data = {
        "id": task_id,
        "title": f"Task {task_id}",
        "status": "todo",
        "when_type": "anytime",
        "sort_order": 0,
        "created_at": datetime(2024, 6, 1, 8, 0, 0),
        "updated_at": datetime(2024, 6, 1, 8, 0, 0),
    }
    data.update(kwargs)
    return Task.model_validate(data)


# ---------------------------------------------------------------------------
# Filesystem isolation
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def isolated_logger(tmp_path):
    """Send log output to a temporary directory."""
    import tasklane.utils.logger as logger_mod

    logger_mod._logger = None
    logging.getLogger("tasklane").handlers.clear()
    with patch("tasklane.utils.logger.user_log_dir", return_value=str(tmp_path / "logs")):
        yield tmp_path / "logs"
    for handler in logging.getLogger("tasklane").handlers:
        handler.close()
    logging.getLogger("tasklane").handlers.clear()
    logger_mod._logger = None


@pytest.fixture()
def tmp_config(tmp_path):
    """Provide a ConfigManager backed by a temporary directory."""
    import tasklane.config as config_mod

    config_mod._config_manager = None
    with patch("tasklane.config.user_config_dir", return_value=str(tmp_path / "config")):
        with patch("tasklane.config.user_data_dir", return_value=str(tmp_path / "data")):
            yield config_mod.get_config_manager()
    config_mod._config_manager = None


# ---------------------------------------------------------------------------
# Gateway wiring
# ---------------------------------------------------------------------------


@pytest.fixture()
def mock_repo():
    repo = MagicMock()
    repo.list_all = AsyncMock(return_value=[])
    repo.get = AsyncMock()
    repo.add = AsyncMock(side_effect=lambda task: task)
    repo.update = AsyncMock(return_value=None)
    repo.soft_delete = AsyncMock(return_value=None)
    return repo


@pytest.fixture()
def mock_time_entries():
    time_entries = MagicMock()
    time_entries.has_time = AsyncMock(return_value=True)
    time_entries.add_entry = AsyncMock(return_value=None)
    return time_entries


@pytest.fixture()
def channel():
    return InvalidationChannel()


@pytest.fixture()
def store():
    return TaskStore(
        TaskScope(),
        [make_task(f"task-{i}", sort_order=i) for i in range(5)],
    )


@pytest.fixture()
def gateway(store, mock_repo, mock_time_entries, channel):
    gw = TaskMutationGateway(
        store,
        mock_repo,
        mock_time_entries,
        channel,
        clock=lambda: NOW,
    )
    yield gw
    gw.close()
