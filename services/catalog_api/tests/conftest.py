import io
from typing import Any, Optional

import pytest
from botocore.exceptions import ClientError
from fastapi.testclient import TestClient

from services.catalog_api import config, storage, stream_cache
from services.catalog_api.app import app
from services.catalog_api.db import get_db
from services.catalog_api.security import create_token
from services.catalog_api.storage import S3ObjectStore

ADMIN_ID = 1
USER_ID = 2

_MISSING = object()


class FakeDatabase:
    """Stand-in for DatabaseConnection that answers by SQL fragment.

    ``on(fragment, result)`` registers a response for any statement
    containing ``fragment``; the first matching registration wins. A
    callable result is called with the statement params, an exception
    instance is raised.
    """

    def __init__(self) -> None:
        self.calls: list[tuple[str, str, tuple]] = []
        self.scripts: list[str] = []
        self.commits = 0
        self.rollbacks = 0
        self._responses: list[tuple[str, Optional[str], Any]] = []

    def on(self, fragment: str, result: Any, *, method: Optional[str] = None) -> "FakeDatabase":
        self._responses.append((fragment, method, result))
        return self

    def _answer(self, method: str, sql: str, params) -> Any:
        params = tuple(params)
        self.calls.append((method, sql, params))
        for fragment, only, result in self._responses:
            if fragment in sql and (only is None or only == method):
                if isinstance(result, BaseException):
                    raise result
                return result(params) if callable(result) else result
        return _MISSING

    def fetch_one(self, sql: str, params=()) -> Optional[dict]:
        result = self._answer("fetch_one", sql, params)
        return None if result is _MISSING else result

    def fetch_all(self, sql: str, params=()) -> list[dict]:
        result = self._answer("fetch_all", sql, params)
        return [] if result is _MISSING else result

    def execute(self, sql: str, params=()) -> int:
        result = self._answer("execute", sql, params)
        return 1 if result is _MISSING else result

    def execute_script(self, sql: str) -> None:
        self.scripts.append(sql)

    def commit(self) -> None:
        self.commits += 1

    def rollback(self) -> None:
        self.rollbacks += 1

    def close(self) -> None:
        pass

    def statements(self, fragment: str) -> list[tuple[str, str, tuple]]:
        return [call for call in self.calls if fragment in call[1]]


class FakeS3Client:
    """In-memory replacement for a boto3 S3 client."""

    def __init__(self) -> None:
        self.objects: dict[str, tuple[bytes, str]] = {}
        self.presigned: list[tuple[str, str, int]] = []
        self.deleted: list[str] = []
        self.cors: Optional[dict] = None
        self.fail_with: Optional[str] = None

    def _maybe_fail(self, operation: str) -> None:
        if self.fail_with:
            raise ClientError({"Error": {"Code": self.fail_with, "Message": "boom"}}, operation)

    def put_object(self, *, Bucket, Key, Body, ContentType, ACL=None):
        self._maybe_fail("PutObject")
        self.objects[Key] = (Body, ContentType)

    def get_object(self, *, Bucket, Key):
        self._maybe_fail("GetObject")
        if Key not in self.objects:
            raise ClientError({"Error": {"Code": "NoSuchKey", "Message": "missing"}}, "GetObject")
        body, content_type = self.objects[Key]
        return {"Body": io.BytesIO(body), "ContentType": content_type}

    def generate_presigned_url(self, operation, Params, ExpiresIn):
        self._maybe_fail(operation)
        self.presigned.append((operation, Params["Key"], ExpiresIn))
        return f"https://signed.test/{Params['Key']}?op={operation}&expires={ExpiresIn}"

    def delete_object(self, *, Bucket, Key):
        self._maybe_fail("DeleteObject")
        self.deleted.append(Key)
        self.objects.pop(Key, None)

    def head_bucket(self, *, Bucket):
        self._maybe_fail("HeadBucket")

    def put_bucket_cors(self, *, Bucket, CORSConfiguration):
        self._maybe_fail("PutBucketCors")
        self.cors = CORSConfiguration


def make_store(name: str = "r2", public_base: Optional[str] = "https://cdn.test") -> S3ObjectStore:
    return S3ObjectStore(
        name,
        bucket="media",
        endpoint=f"https://{name}.storage.test",
        access_key="key",
        secret_key="secret",
        region="auto",
        public_base=public_base,
        client=FakeS3Client(),
    )


@pytest.fixture(autouse=True)
def _test_config(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setattr(config, "JWT_SECRET", "test-secret")
    monkeypatch.setattr(config, "JWT_EXPIRES_DAYS", 7)
    monkeypatch.setattr(config, "BCRYPT_ROUNDS", 4)
    monkeypatch.setattr(config, "DATABASE_URL", "")
    monkeypatch.setattr(config, "REDIS_URL", "")
    monkeypatch.setattr(config, "ORACLE_MUSIC_BASE_URL", "")
    monkeypatch.setattr(config, "MOVIE_STORAGE_PROVIDER", "r2")
    monkeypatch.setattr(config, "SIGNED_URL_TTL", 3600)
    monkeypatch.setattr(config, "GOOGLE_CLIENT_ID", "")
    monkeypatch.setattr(config, "GOOGLE_TRUST_CLIENT_EMAIL", False)
    stream_cache.clear()
    storage.reset_stores()
    yield
    stream_cache.clear()
    storage.reset_stores()


@pytest.fixture
def fake_db() -> FakeDatabase:
    db = FakeDatabase()
    db.on("SELECT is_admin FROM users", lambda params: {"is_admin": params[0] == ADMIN_ID})
    return db


@pytest.fixture
def client(fake_db: FakeDatabase):
    app.dependency_overrides[get_db] = lambda: fake_db
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def store_factory():
    return make_store


@pytest.fixture
def r2() -> S3ObjectStore:
    store = make_store("r2")
    storage._stores["r2"] = store
    return store


def _auth(user_id: int, username: str, is_admin: bool) -> dict:
    token = create_token({"id": user_id, "username": username, "is_admin": is_admin})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def admin_headers() -> dict:
    return _auth(ADMIN_ID, "admin", True)


@pytest.fixture
def user_headers() -> dict:
    return _auth(USER_ID, "alice", False)
