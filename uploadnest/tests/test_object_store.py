from urllib.parse import parse_qs, urlparse

import pytest
from botocore.exceptions import ClientError

from uploadnest.errors import InternalServerError
from uploadnest.object_store import ObjectStore, attachment_disposition

def query_of(url: str) -> dict:
    return {k: v[0] for k, v in parse_qs(urlparse(url).query).items()}

@pytest.mark.asyncio
async def test_put_then_read_stream(store: ObjectStore, fake_s3):
    await store.put("users/u/1-a.txt", b"hello world", "text/plain")

    assert fake_s3.objects["users/u/1-a.txt"]["content_type"] == "text/plain"
    body = await store.get_read_stream("users/u/1-a.txt")
    try:
        assert body.read() == b"hello world"
    finally:
        body.close()

@pytest.mark.asyncio
async def test_put_failure_is_reraised(store: ObjectStore, fake_s3):
    fake_s3.fail_put.add("broken")

    with pytest.raises(ClientError):
        await store.put("users/u/1-broken.txt", b"x", "text/plain")
    assert "users/u/1-broken.txt" not in fake_s3.objects

@pytest.mark.asyncio
async def test_read_stream_for_missing_key_raises_internal_error(store: ObjectStore):
    with pytest.raises(InternalServerError) as exc_info:
        await store.get_read_stream("users/u/missing.txt")
    assert exc_info.value.status_code == 500
    assert exc_info.value.message == "Failed to retrieve file"

@pytest.mark.asyncio
async def test_delete(store: ObjectStore, fake_s3):
    await store.put("users/u/1-a.txt", b"abc", "text/plain")
    await store.delete("users/u/1-a.txt")

    assert "users/u/1-a.txt" not in fake_s3.objects
    assert fake_s3.deleted == ["users/u/1-a.txt"]

@pytest.mark.asyncio
async def test_signed_url_inline_with_content_type(store: ObjectStore):
    url = await store.get_signed_url("users/u/1-photo.png", expires_in=3600, content_type="image/png")

    parsed = urlparse(url)
    assert parsed.path.endswith("/users/u/1-photo.png")
    query = query_of(url)
    assert query["response-content-disposition"] == "inline"
    assert query["response-content-type"] == "image/png"
    assert query["X-Amz-Expires"] == "3600"

@pytest.mark.asyncio
async def test_signed_url_attachment_uses_default_expiry(store: ObjectStore):
    url = await store.get_signed_url("users/u/1-a.txt", download_filename="a.txt")

    query = query_of(url)
    assert query["response-content-disposition"] == 'attachment;filename="a.txt"'
    assert "response-content-type" not in query
    assert query["X-Amz-Expires"] == "60"

def test_attachment_disposition_for_non_ascii_name():
    value = attachment_disposition("résumé.pdf")

    assert value.startswith('attachment;filename="rsum.pdf"')
    assert "filename*=UTF-8''r%C3%A9sum%C3%A9.pdf" in value

def test_attachment_disposition_strips_quotes():
    assert attachment_disposition('bad"name.txt') == 'attachment;filename="badname.txt"'

def test_from_settings_builds_client(monkeypatch):
    from uploadnest.config import settings

    monkeypatch.setattr(settings, "AWS_ACCESS_KEY", "key")
    monkeypatch.setattr(settings, "AWS_SECRET_KEY", "secret")
    monkeypatch.setattr(settings, "S3_ENDPOINT_URL", "http://localhost:9000")

    store = ObjectStore.from_settings(settings)

    assert store.bucket == settings.AWS_S3_BUCKET
    assert store.default_expires == settings.SIGNED_URL_EXPIRES
    assert store.client.meta.endpoint_url == "http://localhost:9000"
