"""Unit tests for the persistent build cache."""

from __future__ import annotations

import pytest

from packforge.core.cache import Cache, ImageCache, VolumeCache, cache_key, new_cache
from packforge.core.errors import CacheError
from tests.fakes import FakeEngine


class TestCacheKey:
    def test_stable_per_repo(self):
        assert cache_key("my/app") == cache_key("my/app")
        assert cache_key("my/app").startswith("pack-cache-")

    def test_distinct_repos(self):
        assert cache_key("my/app") != cache_key("my/other")


class TestImageCache:
    def test_protocol(self, engine: FakeEngine):
        assert isinstance(ImageCache("my/app", engine), Cache)

    def test_args_and_binds(self, engine: FakeEngine):
        cache = ImageCache("my/app", engine)
        assert cache.phase_args() == [f"-image={cache_key('my/app')}"]
        assert cache.binds() == []

    def test_clear_removes_image_and_keeps_identity(self, engine: FakeEngine):
        cache = ImageCache("my/app", engine)
        engine.add_image(cache.image())
        cache.clear()
        assert cache.image() not in engine.images
        assert cache.image() == cache_key("my/app")

    def test_clear_failure_raises_cache_error(self, engine: FakeEngine, monkeypatch: pytest.MonkeyPatch):
        def _refuse(ref: str) -> None:
            raise RuntimeError("image in use")

        monkeypatch.setattr(engine, "remove_image", _refuse)
        with pytest.raises(CacheError, match="image in use"):
            ImageCache("my/app", engine).clear()


class TestVolumeCache:
    def test_args_and_binds(self, engine: FakeEngine):
        cache = VolumeCache("my/app", engine)
        assert cache.phase_args() == ["-path=/cache"]
        assert cache.binds() == [f"{cache_key('my/app')}:/cache"]

    def test_clear_recreates_volume(self, engine: FakeEngine):
        cache = VolumeCache("my/app", engine)
        engine.create_volume(cache.image())
        engine.volumes[cache.image()]["stale"] = object()
        cache.clear()
        assert engine.volumes[cache.image()] == {}


def test_new_cache_kinds(engine: FakeEngine):
    assert isinstance(new_cache("image", "my/app", engine), ImageCache)
    assert isinstance(new_cache("volume", "my/app", engine), VolumeCache)
