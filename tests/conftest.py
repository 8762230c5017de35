import os
import tempfile

# Must be in place before config.py is imported
_TMP = tempfile.mkdtemp(prefix="wbnt-tests-")
os.environ["DATA_DIR"] = os.path.join(_TMP, "data")
os.environ["UPLOAD_DIR"] = os.path.join(_TMP, "uploads")
os.environ["LOG_FILE"] = os.path.join(_TMP, "test.log")
os.environ["PRODUCTS_SEED_FILE"] = os.path.join(_TMP, "no-seed.json")
os.environ["SECRET_KEY"] = "test-secret"
os.environ["PBKDF2_ITERATIONS"] = "1000"
os.environ["USE_JSON_DB"] = "0"

import pytest

import server
from db_json import JsonStore
from security import hash_password
from storage import SqliteStore


@pytest.fixture(params=["sqlite", "json"])
def store(request, tmp_path):
    if request.param == "sqlite":
        s = SqliteStore(str(tmp_path / "test.db")).init()
    else:
        s = JsonStore(str(tmp_path / "json"))
    s.seed_homepage_defaults()
    return s


@pytest.fixture
def app(store, tmp_path):
    server.app.config.update(
        TESTING=True,
        STORE=store,
        UPLOAD_DIR=str(tmp_path / "uploads"),
        MAX_UPLOAD_MB=5,
        MAX_CONTENT_LENGTH=6 * 1024 * 1024,
        TRUST_USER_ID_HEADER=True,
        ALLOW_STAFF_SIGNUP=False,
    )
    yield server.app
    server.app.config["STORE"] = None


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def make_user(store):
    def _make(username, role="buyer", password="secret123", status=None):
        pwd_hash, salt = hash_password(password)
        user = store.create_user(f"{username}@example.com", username, pwd_hash, salt, role)
        if status:
            user = store.update_user_status(user["id"], status)
        return user
    return _make


@pytest.fixture
def admin(make_user):
    return make_user("boss", role="admin")


@pytest.fixture
def mod(make_user):
    return make_user("moddy", role="mod")


@pytest.fixture
def buyer(make_user):
    return make_user("shopper")


@pytest.fixture
def product(store):
    return store.create_product({"name": "Baby Tee", "price": 350, "size": "S", "status": "Available"})


def as_user(user):
    return {"X-User-Id": str(user["id"])}


@pytest.fixture
def auth():
    return as_user
