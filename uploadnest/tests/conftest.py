import io
from typing import AsyncGenerator

import boto3
import httpx
import pytest
import pytest_asyncio
from botocore.client import Config
from botocore.exceptions import ClientError
from botocore.response import StreamingBody
from httpx import AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from uploadnest import crud, schemas
from uploadnest.config import settings
from uploadnest.database import get_db, get_session_factory
from uploadnest.main import app
from uploadnest.models import Base
from uploadnest.object_store import ObjectStore, get_object_store
from uploadnest.security import create_access_token, hash_password

TEST_BUCKET = "test-bucket"
TEST_PASSWORD = "secret-password"

class TrackedBody(StreamingBody):
    """StreamingBody that reports when it is closed."""

    def __init__(self, raw_stream, content_length, on_close):
        super().__init__(raw_stream, content_length)
        self._on_close = on_close

    def close(self):
        self._on_close()
        super().close()

class FakeS3Client:
    """In-memory stand-in for the boto3 S3 client.

    Keys containing any marker from ``fail_put``/``fail_delete``/``fail_get``
    raise a ClientError for that operation. Presigning goes through a real
    boto3 client, which signs offline.
    """

    def __init__(self):
        self.objects = {}
        self.deleted = []
        self.closed_bodies = []
        self.fail_put = set()
        self.fail_delete = set()
        self.fail_get = set()
        self.fail_upload = False
        self._signer = boto3.client(
            "s3",
            region_name="us-east-1",
            aws_access_key_id="testing",
            aws_secret_access_key="testing",
            config=Config(signature_version="s3v4"),
        )

    @staticmethod
    def _error(code: str, operation: str) -> ClientError:
        return ClientError({"Error": {"Code": code, "Message": f"{operation} failed"}}, operation)

    @staticmethod
    def _matches(key: str, markers) -> bool:
        return any(marker in key for marker in markers)

    def put_object(self, Bucket, Key, Body, ContentType=None, Metadata=None):
        if self._matches(Key, self.fail_put):
            raise self._error("InternalError", "PutObject")
        self.objects[Key] = {"body": bytes(Body), "content_type": ContentType}
        return {"ETag": '"fake"'}

    def delete_object(self, Bucket, Key):
        if self._matches(Key, self.fail_delete):
            raise self._error("InternalError", "DeleteObject")
        self.objects.pop(Key, None)
        self.deleted.append(Key)
        return {}

    def get_object(self, Bucket, Key):
        if self._matches(Key, self.fail_get) or Key not in self.objects:
            raise self._error("NoSuchKey", "GetObject")
        body = self.objects[Key]["body"]
        return {
            "Body": TrackedBody(io.BytesIO(body), len(body), lambda: self.closed_bodies.append(Key)),
            "ContentLength": len(body),
            "ContentType": self.objects[Key]["content_type"],
        }

    def upload_fileobj(self, Fileobj, Bucket, Key, ExtraArgs=None):
        chunks = []
        while True:
            chunk = Fileobj.read(1024 * 1024)
            if self.fail_upload:
                raise self._error("InternalError", "UploadPart")
            if not chunk:
                break
            chunks.append(chunk)
        self.objects[Key] = {
            "body": b"".join(chunks),
            "content_type": (ExtraArgs or {}).get("ContentType"),
        }

    def generate_presigned_url(self, ClientMethod, Params=None, ExpiresIn=3600):
        return self._signer.generate_presigned_url(ClientMethod=ClientMethod, Params=Params, ExpiresIn=ExpiresIn)

@pytest.fixture(scope="function")
def fake_s3() -> FakeS3Client:
    return FakeS3Client()

@pytest.fixture(scope="function")
def store(fake_s3) -> ObjectStore:
    return ObjectStore(fake_s3, TEST_BUCKET)

@pytest_asyncio.fixture(scope="function")
async def test_engine(tmp_path):
    # file-backed so concurrent per-file sessions see the same database
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test_uploadnest.db'}", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()

@pytest.fixture(scope="function")
def session_factory(test_engine) -> async_sessionmaker:
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)

@pytest_asyncio.fixture(scope="function")
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session
        await session.rollback()

@pytest.fixture(scope="function")
def user_factory(db_session: AsyncSession):
    async def create(email: str = "owner@example.com", quota: int = settings.DEFAULT_STORAGE_QUOTA):
        user_in = schemas.RegisterRequest(name=email.split("@")[0], email=email, password=TEST_PASSWORD)
        return await crud.create_user_with_storage(db_session, user_in, hash_password(TEST_PASSWORD), quota)
    return create

@pytest_asyncio.fixture(scope="function")
async def test_user(user_factory):
    return await user_factory()

@pytest.fixture(scope="function")
def auth_headers(test_user):
    token, _ = create_access_token(test_user.id, settings)
    return {"Authorization": f"Bearer {token}"}

@pytest_asyncio.fixture(scope="function")
async def async_client(db_session: AsyncSession, session_factory, store) -> AsyncGenerator[AsyncClient, None]:
    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_object_store] = lambda: store

    transport = httpx.ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://testuploadnest") as client:
        yield client

    app.dependency_overrides.clear()
