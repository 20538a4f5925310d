from parking_pro.cache import JsonFileCache, load_snapshot, save_snapshot

from conftest import read_json


def test_round_trip(tmp_path):
    path = tmp_path / "location-cache.json"
    cache = JsonFileCache(path)
    cache.put("123 main st, sydney", {"lat": -33.87, "lng": 151.2})

    reloaded = JsonFileCache(path)

    assert reloaded.snapshot() == {"123 main st, sydney": {"lat": -33.87, "lng": 151.2}}
    assert "123 main st, sydney" in reloaded
    assert len(reloaded) == 1


def test_put_rewrites_indented_snapshot(tmp_path):
    path = tmp_path / "reverse-cache.json"
    cache = JsonFileCache(path)
    cache.put("-33.8688,151.2093", "George Street")
    cache.put("-33.8915,151.2767", "Campbell Parade")

    assert read_json(path) == {
        "-33.8688,151.2093": "George Street",
        "-33.8915,151.2767": "Campbell Parade",
    }
    assert path.read_text(encoding="utf-8").startswith("{\n  ")


def test_missing_file_is_empty(tmp_path):
    assert load_snapshot(tmp_path / "nope.json") == {}
    assert len(JsonFileCache(tmp_path / "nope.json")) == 0


def test_malformed_file_is_empty(tmp_path):
    path = tmp_path / "broken.json"
    path.write_text("{not json", encoding="utf-8")
    assert load_snapshot(path) == {}


def test_non_object_file_is_empty(tmp_path):
    path = tmp_path / "list.json"
    path.write_text("[1, 2, 3]", encoding="utf-8")
    assert load_snapshot(path) == {}


def test_save_failure_is_absorbed(tmp_path):
    # a directory cannot be opened for writing
    assert save_snapshot(tmp_path, {"a": 1}) is False


def test_put_keeps_value_when_flush_fails(tmp_path):
    cache = JsonFileCache(tmp_path / "missing-dir" / "cache.json")
    cache.put("k", "v")
    assert cache.get("k") == "v"
    assert cache.flush() is False
