import pytest

from services.storage.client import LocalS3Client


@pytest.fixture
def storage_root(tmp_path):
    return tmp_path / "store"


@pytest.fixture
def client(storage_root):
    return LocalS3Client("test-bucket", prefix=str(storage_root), chunk_size=4)


@pytest.fixture
def upload(client):
    """Put `body` under `key` and return the terminal response."""

    async def _upload(key, body, headers=None):
        request = client.put(key, headers or {})
        request.once("continue", lambda: request.end(body))
        return await request.wait_response()

    return _upload
