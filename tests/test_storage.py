import json

import mongomock
import pytest
from bson.errors import InvalidDocument
from pymongo.errors import PyMongoError

import storage
from storage import JsonFileStore, MemoryStore, MongoStore, build_store


def test_file_store_round_trip_survives_new_instance(tmp_path):
    posts = [
        {"id": "1", "title": "A", "tags": ["x", "y"], "createdAt": "2024-01-01T00:00:00.000Z"},
        {"id": "2", "title": "B", "tags": [], "createdAt": "2024-01-02T00:00:00.000Z"},
    ]
    store = JsonFileStore(tmp_path)
    assert store.write("blogs", posts) is True

    assert JsonFileStore(tmp_path).read("blogs", []) == posts
    text = (tmp_path / "blogs.json").read_text(encoding="utf-8")
    assert text.startswith("[\n  {")


def test_file_store_keeps_unicode_readable(tmp_path):
    store = JsonFileStore(tmp_path)
    store.write("blogs", [{"title": "Café 🚀"}])
    assert "Café 🚀" in (tmp_path / "blogs.json").read_text(encoding="utf-8")


def test_read_missing_returns_independent_default(tmp_path):
    store = JsonFileStore(tmp_path / "nowhere")
    default = []
    value = store.read("blogs", default)
    value.append("changed")
    assert default == []


def test_read_corrupt_file_falls_back(tmp_path):
    (tmp_path / "blogs.json").write_text("{not json", encoding="utf-8")
    assert JsonFileStore(tmp_path).read("blogs", ["fallback"]) == ["fallback"]


def test_read_strict_raises_when_directory_missing(tmp_path):
    with pytest.raises(FileNotFoundError):
        JsonFileStore(tmp_path / "missing").read_strict("blogs")


def test_write_reports_failure_instead_of_raising(tmp_path):
    store = JsonFileStore(tmp_path / "missing")
    assert store.write("blogs", []) is False


def test_write_unserialisable_value_keeps_previous_content(tmp_path):
    store = JsonFileStore(tmp_path)
    store.write("blogs", [{"id": "1"}])
    assert store.write("blogs", [object()]) is False
    assert store.read("blogs", []) == [{"id": "1"}]
    assert [p.name for p in tmp_path.iterdir()] == ["blogs.json"]


def test_initialize_creates_directory_and_default(tmp_path):
    store = JsonFileStore(tmp_path / "data" / "nested")
    assert store.initialize("blogs", lambda: [{"id": "seed"}]) is True
    assert store.read_strict("blogs") == [{"id": "seed"}]

    assert store.initialize("blogs", lambda: []) is False
    assert store.read_strict("blogs") == [{"id": "seed"}]


def test_initialize_leaves_unreadable_file_alone(tmp_path):
    (tmp_path / "admin.json").write_text("garbage", encoding="utf-8")
    store = JsonFileStore(tmp_path)
    assert store.initialize("admin", dict) is False
    assert (tmp_path / "admin.json").read_text(encoding="utf-8") == "garbage"


def test_full_snapshot_writes_are_last_writer_wins(tmp_path):
    store = JsonFileStore(tmp_path)
    store.write("blogs", [])

    first = store.read("blogs", [])
    second = store.read("blogs", [])
    first.append({"id": "a"})
    store.write("blogs", first)
    second.append({"id": "b"})
    store.write("blogs", second)

    assert store.read("blogs", []) == [{"id": "b"}]


def test_memory_store_does_not_share_references():
    store = MemoryStore()
    value = [{"id": "1"}]
    store.write("blogs", value)
    value[0]["id"] = "changed"

    read = store.read("blogs", [])
    assert read == [{"id": "1"}]
    read.append({"id": "2"})
    assert store.read("blogs", []) == [{"id": "1"}]


def test_memory_store_missing_and_remove():
    store = MemoryStore()
    assert store.exists("admin") is False
    assert store.read("admin", None) is None
    store.write("admin", {"username": "admin"})
    assert store.exists("admin")
    assert store.remove("admin") is True
    assert store.exists("admin") is False


@pytest.fixture
def mongo_store():
    return MongoStore(mongomock.MongoClient()["blog"])


def test_mongo_store_keeps_list_order(mongo_store):
    posts = [{"id": str(i), "title": f"Post {i}"} for i in range(5)]
    assert mongo_store.write("blogs", posts) is True
    assert mongo_store.read("blogs", []) == posts

    assert mongo_store.write("blogs", posts[:2]) is True
    assert mongo_store.read("blogs", []) == posts[:2]


def test_mongo_store_empty_list_still_exists(mongo_store):
    mongo_store.write("blogs", [])
    assert mongo_store.exists("blogs")
    assert mongo_store.initialize("blogs", lambda: [{"id": "seed"}]) is False
    assert mongo_store.read_strict("blogs") == []


def test_mongo_store_single_record(mongo_store):
    record = {"username": "admin", "password": "hash", "lastLogin": None}
    mongo_store.write("admin", record)
    assert mongo_store.read_strict("admin") == record


def test_mongo_store_missing_locator(mongo_store):
    assert mongo_store.read("admin", "fallback") == "fallback"
    with pytest.raises(FileNotFoundError):
        mongo_store.read_strict("admin")


def test_mongo_store_failed_write_keeps_previous_value(mongo_store, monkeypatch):
    posts = [{"id": "1"}, {"id": "2"}]
    mongo_store.write("blogs", posts)

    def unavailable(*args, **kwargs):
        raise PyMongoError("primary stepped down")

    monkeypatch.setattr(mongo_store.collection, "replace_one", unavailable)
    assert mongo_store.write("blogs", [{"id": "3"}]) is False
    assert mongo_store.read("blogs", None) == posts


def test_mongo_store_unencodable_value_reports_failure(mongo_store, monkeypatch):
    mongo_store.write("blogs", [{"id": "1"}])

    def reject(*args, **kwargs):
        raise InvalidDocument("cannot encode object")

    monkeypatch.setattr(mongo_store.collection, "replace_one", reject)
    assert mongo_store.write("blogs", [{"id": "2"}]) is False
    assert mongo_store.read("blogs", None) == [{"id": "1"}]


def test_mongo_store_remove(mongo_store):
    mongo_store.write("storage-check", {"check": True})
    assert mongo_store.remove("storage-check") is True
    assert mongo_store.exists("storage-check") is False
    assert mongo_store.remove("storage-check") is False


def test_build_store_selects_adapter(tmp_path):
    assert isinstance(build_store({"STORAGE_BACKEND": "memory"}), MemoryStore)
    store = build_store({"STORAGE_BACKEND": "file", "DATA_DIR": tmp_path})
    assert isinstance(store, JsonFileStore)
    assert store.data_dir == tmp_path


def test_build_store_mongo_without_uri_uses_files(tmp_path):
    store = build_store({"STORAGE_BACKEND": "mongo", "MONGODB_URI": "", "DATA_DIR": tmp_path})
    assert isinstance(store, JsonFileStore)


def test_build_store_mongo_connection_failure_uses_files(tmp_path, monkeypatch):
    monkeypatch.setattr(storage, "connect_mongo", lambda uri, db: None)
    store = build_store(
        {"STORAGE_BACKEND": "mongo", "MONGODB_URI": "mongodb://nowhere", "DATA_DIR": tmp_path}
    )
    assert isinstance(store, JsonFileStore)


def test_build_store_mongo_connected(tmp_path, monkeypatch):
    mongo = MongoStore(mongomock.MongoClient()["blog"])
    monkeypatch.setattr(storage, "connect_mongo", lambda uri, db: mongo)
    store = build_store({"STORAGE_BACKEND": "mongo", "MONGODB_URI": "mongodb://db", "DATA_DIR": tmp_path})
    assert store is mongo


def test_build_store_rejects_unknown_backend(tmp_path):
    with pytest.raises(ValueError):
        build_store({"STORAGE_BACKEND": "redis", "DATA_DIR": tmp_path})


def test_timestamp_format():
    stamp = storage.timestamp()
    assert stamp.endswith("Z")
    assert len(stamp) == len("2024-01-01T00:00:00.000Z")
    json.dumps(stamp)
