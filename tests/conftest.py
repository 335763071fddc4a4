"""Shared fixtures for leadflow tests."""

import pytest
import tempfile
from pathlib import Path

from leadflow.core.config import DistributionConfig
from leadflow.distribution import LeadDistributionService, QueueService
from leadflow.notifications import notifier
from leadflow.storage.database import LeadflowDatabase


@pytest.fixture(autouse=True)
def no_webhooks(monkeypatch):
    """Keep notifications off unless a test turns them on."""
    monkeypatch.delenv("LEADFLOW_NOTIFICATIONS_ENABLED", raising=False)
    monkeypatch.delenv("LEADFLOW_WEBHOOK_URL", raising=False)
    notifier.reset_config()
    yield
    notifier.reset_config()


@pytest.fixture
def temp_dir():
    """Create temporary data directory."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def db(temp_dir):
    return LeadflowDatabase(temp_dir / "leadflow.db")


@pytest.fixture
def config():
    return DistributionConfig()


@pytest.fixture
def queue(db, config):
    return QueueService(db, config)


@pytest.fixture
def leads(db, config, queue):
    return LeadDistributionService(db, config, queue=queue)


@pytest.fixture
def realtors(db, queue):
    """Three queued realtors: ana (1), bruno (2), carla (3)."""
    ids = []
    for realtor_id, name in [("ana", "Ana"), ("bruno", "Bruno"), ("carla", "Carla")]:
        db.add_realtor(name, email=f"{realtor_id}@example.com", realtor_id=realtor_id)
        queue.join_queue(realtor_id)
        ids.append(realtor_id)
    return ids


def positions(queue):
    """Map realtor id to queue position."""
    return {entry.realtor_id: entry.position for entry in queue.list_queue()}
