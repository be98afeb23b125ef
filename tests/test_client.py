import asyncio
import hashlib
import json

import aiofiles.os
import pytest

from config.models.core_models import RequestState
from services.storage import channels as channels_module
from services.storage import client as client_module
from services.storage.client import LocalS3Client, create_client
from services.storage.errors import AccessDenied, parse_error_xml
from services.storage.metadata import metadata_path
from config.settings import StorageConfig


def _etag(data: bytes) -> str:
    return f'"{hashlib.md5(data).hexdigest()}"'


async def _call(request):
    response = await request.wait_response()
    return response, await response.read()


# ----------------------------------------------------------------------
# Provisioning
# ----------------------------------------------------------------------

def test_client_creates_prefix_and_bucket(tmp_path):
    client = LocalS3Client("photos", prefix=str(tmp_path / "deep" / "root"))
    assert client.bucket_path == tmp_path / "deep" / "root" / "photos"
    assert client.bucket_path.is_dir()

    # a second client on the same bucket reuses the directories
    LocalS3Client("photos", prefix=str(tmp_path / "deep" / "root"))


@pytest.mark.parametrize("bucket", [None, "", "..", "a/b"])
def test_client_rejects_bad_bucket(tmp_path, bucket):
    with pytest.raises(ValueError):
        LocalS3Client(bucket, prefix=str(tmp_path))


def test_create_client_from_config(tmp_path):
    config = StorageConfig(bucket="cfg", prefix=str(tmp_path), server_name="Stub", chunk_size=8)
    client = create_client(config)
    assert client.bucket_path == tmp_path / "cfg"
    assert client.server_name == "Stub"
    assert client.chunk_size == 8


def test_operations_need_a_running_loop(client):
    with pytest.raises(RuntimeError):
        client.head("a")


def test_empty_key_rejected(client):
    with pytest.raises(ValueError):
        client.get("")


# ----------------------------------------------------------------------
# Happy paths
# ----------------------------------------------------------------------

async def test_put_head_get_delete_scenario(client, upload):
    response = await upload("a/b.txt", b"hello", {"Content-Type": "text/plain"})
    assert response.status_code == 200
    assert response.headers["etag"] == _etag(b"hello")
    assert response.headers["content-length"] == "0"
    assert response.headers["server"] == client.server_name

    response, body = await _call(client.head("a/b.txt"))
    assert response.status_code == 200
    assert response.headers["content-length"] == "5"
    assert response.headers["content-type"] == "text/plain"
    assert body == b""

    response, body = await _call(client.get("a/b.txt"))
    assert response.status_code == 200
    assert body == b"hello"
    assert response.headers["etag"] == _etag(b"hello")

    response, _ = await _call(client.delete("a/b.txt"))
    assert response.status_code == 204
    assert response.headers["connection"] == "close"

    response, body = await _call(client.get("a/b.txt"))
    assert response.status_code == 404
    assert parse_error_xml(body)[0] == "NoSuchKey"


async def test_event_style_usage(client):
    loop = asyncio.get_running_loop()

    put_done = loop.create_future()
    request = client.put("events/doc.txt", {"Content-Type": "text/plain", "Content-Length": 11})
    request.on("continue", lambda: request.end(b"hello world"))
    request.on("response", lambda res: res.on("end", lambda: put_done.set_result(res.status_code)))
    assert await put_done == 200

    get_done = loop.create_future()
    chunks = []

    def on_response(res):
        res.on("data", chunks.append)
        res.on("end", lambda: get_done.set_result(res))

    request = client.get("events/doc.txt")
    request.on("response", on_response)
    request.end()

    res = await get_done
    assert res.status_code == 200
    # chunk_size=4 in the fixture
    assert chunks == [b"hell", b"o wo", b"rld"]


async def test_streamed_put_in_several_writes(client):
    request = client.put("big.bin")
    parts = [b"x" * 10, b"y" * 7, "zé"]

    def send():
        for part in parts[:-1]:
            request.write(part)
        request.end(parts[-1])

    request.once("continue", send)
    response = await request.wait_response()

    expected = b"x" * 10 + b"y" * 7 + "zé".encode("utf-8")
    assert response.headers["etag"] == _etag(expected)
    assert (client.bucket_path / "big.bin").read_bytes() == expected

    response, body = await _call(client.get("big.bin"))
    assert body == expected
    assert response.headers["content-length"] == str(len(expected))


async def test_writes_before_continue_are_buffered(client):
    request = client.put("early.txt")
    request.write(b"ab")
    request.end(b"cd")
    response = await request.wait_response()
    assert response.status_code == 200

    _, body = await _call(client.get("early.txt"))
    assert body == b"abcd"


async def test_custom_headers_round_trip_lower_cased(client, upload):
    await upload("meta.txt", b"x", {"Content-Type": "text/plain", "X-Amz-Meta-Owner": "alice",
                                    "Content-Length": 999})

    for method in ("head", "get"):
        response, _ = await _call(getattr(client, method)("meta.txt"))
        assert response.headers["content-type"] == "text/plain"
        assert response.headers["x-amz-meta-owner"] == "alice"
        assert response.headers["content-length"] == "1"
        assert "Content-Type" not in response.headers


async def test_last_modified_is_the_write_time(client, upload):
    put_response = await upload("time.txt", b"t")
    stored = json.loads(metadata_path(client.bucket_path / "time.txt").read_text())

    response, _ = await _call(client.head("time.txt"))
    assert response.headers["last-modified"] == stored["date"]
    assert stored["etag"] == put_response.headers["etag"]


async def test_overwrite_replaces_content(client, upload):
    await upload("k", b"first version")
    await upload("k", b"second")
    response, body = await _call(client.get("k"))
    assert body == b"second"
    assert response.headers["content-length"] == "6"


async def test_special_character_keys(client, upload):
    key = "dir/it's (1)*!.txt"
    await upload(key, b"quirky")
    assert (client.bucket_path / "dir" / "it%27s%20%281%29%2A%21.txt").exists()

    _, body = await _call(client.get(key))
    assert body == b"quirky"


async def test_key_ending_in_meta_does_not_clobber_side_file(client, upload):
    await upload("doc", b"data")
    await upload("doc.meta", b"other object")

    _, body = await _call(client.get("doc"))
    assert body == b"data"
    _, body = await _call(client.get("doc.meta"))
    assert body == b"other object"


async def test_empty_object(client, upload):
    response = await upload("empty", b"")
    assert response.headers["etag"] == _etag(b"")

    response, body = await _call(client.get("empty"))
    assert response.status_code == 200
    assert body == b""
    assert response.headers["content-length"] == "0"


# ----------------------------------------------------------------------
# Missing keys and deletes
# ----------------------------------------------------------------------

@pytest.mark.parametrize("method", ["get", "head"])
async def test_missing_key_is_404(client, method):
    response, body = await _call(getattr(client, method)("never/written"))
    assert response.status_code == 404
    assert parse_error_xml(body) == ("NoSuchKey", "The specified key does not exist.")


async def test_delete_is_idempotent(client, upload):
    await upload("gone.txt", b"bye")

    for _ in range(2):
        response, body = await _call(client.delete("gone.txt"))
        assert response.status_code == 204
        assert body == b""

    assert not (client.bucket_path / "gone.txt").exists()
    assert not metadata_path(client.bucket_path / "gone.txt").exists()


async def test_delete_never_written_key(client):
    response, _ = await _call(client.delete("nothing/here"))
    assert response.status_code == 204


# ----------------------------------------------------------------------
# Failure paths
# ----------------------------------------------------------------------

async def test_put_open_failure_is_access_denied(client, upload):
    await upload("a", b"object where a directory is needed")

    request = client.put("a/b")
    continued = []
    request.on("continue", lambda: continued.append(True))
    response, body = await _call(request)

    assert response.status_code == 403
    assert parse_error_xml(body)[0] == "AccessDenied"
    assert continued == []


async def test_put_disk_full_while_writing_is_access_denied(client, upload, monkeypatch):
    await upload("full.txt", b"old content")
    closed = []

    class FullDisk:
        async def write(self, data):
            raise OSError(28, "No space left on device")

        async def close(self):
            closed.append(True)

    async def open_full_disk(path, mode="r", **kwargs):
        return FullDisk()

    monkeypatch.setattr(channels_module.aiofiles, "open", open_full_disk)
    request = client.put("full.txt")
    request.once("continue", lambda: request.end(b"new content"))
    response, body = await _call(request)

    assert response.status_code == 403
    assert parse_error_xml(body)[0] == "AccessDenied"
    assert closed == [True]
    assert not metadata_path(client.bucket_path / "full.txt").exists()


async def test_failing_continue_listener_closes_the_data_file(client):
    request = client.put("boom.txt")

    def explode():
        raise RuntimeError("listener failed")

    request.on("continue", explode)
    response, body = await _call(request)

    assert response.status_code == 500
    assert parse_error_xml(body) == ("InternalError", "listener failed")
    assert request._channel._file is None


async def test_put_metadata_failure_is_access_denied(client, monkeypatch):
    async def fail(path, headers, key=None):
        raise AccessDenied("disk full", key=key)

    monkeypatch.setattr(client.metadata, "write", fail)
    request = client.put("m.txt")
    request.once("continue", lambda: request.end(b"data"))
    response, body = await _call(request)

    assert response.status_code == 403
    assert parse_error_xml(body) == ("AccessDenied", "disk full")
    assert not metadata_path(client.bucket_path / "m.txt").exists()


async def test_get_with_missing_data_file_is_internal_error(client, upload):
    await upload("orphan", b"data")
    (client.bucket_path / "orphan").unlink()

    response, body = await _call(client.get("orphan"))
    assert response.status_code == 500
    assert parse_error_xml(body)[0] == "InternalError"


async def test_corrupt_metadata_is_internal_error(client, upload):
    await upload("bad", b"data")
    metadata_path(client.bucket_path / "bad").write_text("{broken")

    for method in ("get", "head"):
        response, body = await _call(getattr(client, method)("bad"))
        assert response.status_code == 500
        assert parse_error_xml(body)[0] == "InternalError"


async def test_delete_failure_is_internal_error(client, upload, monkeypatch):
    await upload("locked", b"data")

    async def refuse(path, *args, **kwargs):
        raise PermissionError(1, "Operation not permitted", str(path))

    monkeypatch.setattr(client_module.aiofiles.os, "remove", refuse)
    response, body = await _call(client.delete("locked"))
    assert response.status_code == 500
    assert parse_error_xml(body)[0] == "InternalError"


async def test_unexpected_failure_still_settles_request(client, monkeypatch):
    async def explode(path, key=None):
        raise RuntimeError("unexpected")

    monkeypatch.setattr(client.metadata, "read", explode)
    response, body = await _call(client.head("any"))
    assert response.status_code == 500
    assert parse_error_xml(body) == ("InternalError", "unexpected")


# ----------------------------------------------------------------------
# Aborts
# ----------------------------------------------------------------------

async def test_abort_put_mid_flight(client, upload):
    await upload("partial", b"old content")

    request = client.put("partial")
    responses = []
    request.on("response", responses.append)

    def on_continue():
        request.write(b"new")
        request.abort()

    request.on("continue", on_continue)
    with pytest.raises(asyncio.CancelledError):
        await request.task

    assert responses == []
    assert request.state is RequestState.ABORTED
    assert request.write(b"more") is False
    # no metadata may describe the half-written data
    assert not metadata_path(client.bucket_path / "partial").exists()

    response, _ = await _call(client.get("partial"))
    assert response.status_code == 404


async def test_abort_get_before_response(client, upload):
    await upload("x", b"data")
    request = client.get("x")
    responses = []
    request.on("response", responses.append)
    request.abort()

    with pytest.raises(asyncio.CancelledError):
        await request.task
    assert responses == []


async def test_abort_after_response_is_a_no_op(client, upload):
    await upload("x", b"data")
    request = client.get("x")
    response = await request.wait_response()

    request.abort()
    assert request.state is RequestState.RESPONDED
    assert await response.read() == b"data"


async def test_response_destroy_stops_download(client, upload):
    await upload("long", b"0123456789" * 10)
    response = await client.get("long").wait_response()

    chunks, events = [], []
    closed = asyncio.get_running_loop().create_future()
    response.on("end", lambda: events.append("end"))
    response.on("error", lambda e: events.append("error"))
    response.on("close", lambda: closed.set_result(True))

    def on_data(chunk):
        chunks.append(chunk)
        response.destroy()

    response.on("data", on_data)
    await asyncio.wait_for(closed, 1)

    assert len(chunks) == 1
    assert events == []
