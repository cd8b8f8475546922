import pytest

from app import create_app
from images import LocalImageStorage
from posts import PostRepository
from storage import MemoryStore

ADMIN_PASSWORD = "s3cret-pass"


@pytest.fixture
def settings(tmp_path):
    return {
        "TESTING": True,
        "DATA_DIR": tmp_path / "data",
        "UPLOAD_DIR": tmp_path / "uploads",
        "STORAGE_BACKEND": "file",
        "IMAGE_BACKEND": "local",
        "JWT_SECRET": "test-secret",
        "ADMIN_USER": "admin",
        "ADMIN_PASSWORD": ADMIN_PASSWORD,
        "SEED_SAMPLE_POSTS": False,
        "REFUSE_DEFAULT_CREDENTIALS": False,
        "APP_ENV": "testing",
    }


@pytest.fixture
def app(settings):
    return create_app(settings)


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def auth_headers(client):
    resp = client.post("/auth/login", json={"username": "admin", "password": ADMIN_PASSWORD})
    assert resp.status_code == 200
    return {"Authorization": f"Bearer {resp.get_json()['token']}"}


@pytest.fixture
def images(tmp_path):
    return LocalImageStorage(tmp_path / "uploads")


@pytest.fixture
def repo(images):
    repository = PostRepository(MemoryStore(), images=images)
    repository.initialize()
    return repository


def make_post(repo, **overrides):
    data = {"title": "T", "description": "D", "content": "C"}
    data.update(overrides)
    return repo.create(data)
