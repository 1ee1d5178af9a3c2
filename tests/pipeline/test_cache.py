import threading
import time
from concurrent.futures import ThreadPoolExecutor

import pytest

from dexbook.cache import DiskCache, atomic_write_bytes, cache_key, images_namespace


@pytest.fixture
def cache(tmp_path):
    return DiskCache(tmp_path / "cache")


def test_cache_key_is_filesystem_safe():
    key = cache_key("https://bulbapedia.bulbagarden.net/wiki/Pikachu_(Pok%C3%A9mon)?action=raw")

    assert "/" not in key
    assert ":" not in key
    assert "?" not in key
    assert key.startswith("bulbapedia.bulbagarden.net__wiki__")


def test_cache_key_truncates_long_locators_deterministically():
    long_url = "https://example.org/" + "a" * 400
    other_url = "https://example.org/" + "a" * 399 + "b"

    assert len(cache_key(long_url)) < 200
    assert cache_key(long_url) == cache_key(long_url)
    assert cache_key(long_url) != cache_key(other_url)


def test_get_or_create_keeps_the_first_value(cache):
    assert cache.get_or_create("pages", "k", lambda: b"first") == b"first"
    assert cache.get_or_create("pages", "k", lambda: b"second") == b"first"
    assert cache.get("pages", "k") == b"first"


def test_get_or_create_runs_factory_once_under_contention(cache):
    calls = []
    lock = threading.Lock()

    def factory():
        with lock:
            calls.append(1)
        time.sleep(0.05)
        return b"artifact"

    with ThreadPoolExecutor(max_workers=8) as pool:
        results = list(pool.map(lambda _: cache.get_or_create("images-fast", "h", factory), range(8)))

    assert results == [b"artifact"] * 8
    assert len(calls) == 1


def test_failed_factory_leaves_nothing_behind(cache):
    def factory():
        raise RuntimeError("encoder crashed")

    with pytest.raises(RuntimeError):
        cache.get_or_create("images-fast", "h", factory)

    assert cache.get("images-fast", "h") is None
    assert not any((cache.root / "images-fast").glob("*"))


def test_interrupted_write_leaves_no_partial_entry(tmp_path, monkeypatch):
    target = tmp_path / "ns" / "key"

    def broken_replace(src, dst):
        raise OSError("disk full")

    monkeypatch.setattr("dexbook.cache.os.replace", broken_replace)
    with pytest.raises(OSError):
        atomic_write_bytes(target, b"payload")

    assert not target.exists()
    assert list(target.parent.iterdir()) == []


def test_stray_tmp_files_are_not_read_as_entries(cache):
    directory = cache.root / "pages"
    directory.mkdir(parents=True)
    (directory / ".k.deadbeef.tmp").write_bytes(b"half written")

    assert cache.get("pages", "k") is None
    assert cache.get_or_create("pages", "k", lambda: b"full") == b"full"


def test_invalidate_is_scoped_to_one_tier(cache):
    cache.get_or_create(images_namespace("fast"), "h", lambda: b"small")
    cache.get_or_create(images_namespace("high"), "h", lambda: b"large")

    assert cache.invalidate(images_namespace("fast")) == 1

    assert cache.get(images_namespace("fast"), "h") is None
    assert cache.get(images_namespace("high"), "h") == b"large"
    assert cache.invalidate(images_namespace("fast")) == 0
