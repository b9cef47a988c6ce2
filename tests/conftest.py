import pytest
from fastapi.testclient import TestClient

import main
from database import RecordStore
from media import MediaStore
from operations import GalleryService
from settings import Settings


class RecordingBroadcaster:
    """Stands in for the WebSocket broadcaster and remembers what was published."""

    connection_count = 0

    def __init__(self):
        self.events = []

    def publish(self, event, data):
        self.events.append((event, data))
        return 0

    def names(self):
        return [name for name, _ in self.events]

    def last(self, name):
        for event, data in reversed(self.events):
            if event == name:
                return data
        raise AssertionError(f"{name} was never published")


@pytest.fixture
def settings(tmp_path):
    return Settings(
        data_dir=tmp_path / "data",
        uploads_dir=tmp_path / "uploads",
        payments_dir=tmp_path / "payment-proofs",
        secret_key="test-secret",
        admin_username="admin",
        admin_password="admin123",
    )


@pytest.fixture
def broadcaster():
    return RecordingBroadcaster()


@pytest.fixture
def service(settings, broadcaster):
    return GalleryService(
        settings=settings,
        records=RecordStore(settings.data_dir),
        media=MediaStore(settings.uploads_dir),
        proofs=MediaStore(settings.payments_dir),
        broadcaster=broadcaster,
    )


@pytest.fixture
def app(settings):
    return main.create_app(settings)


@pytest.fixture
def client(app):
    with TestClient(app) as c:
        yield c
