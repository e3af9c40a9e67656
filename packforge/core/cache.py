"""Persistent build cache keyed by repository name.

A cache outlives any single build.  Its identity is derived from the
repository name alone, so every build of the same name finds the same
cache; clearing removes the content but never changes the identity.
Concurrent builds of one repository name share the cache without any
locking; serializing them is up to the caller.
"""

from __future__ import annotations

import hashlib
import logging
from typing import Literal, Protocol, runtime_checkable

from packforge.core.engine import ContainerEngine
from packforge.core.errors import CacheError

logger = logging.getLogger(__name__)

CACHE_MOUNT = "/cache"


def cache_key(repo_name: str) -> str:
    """Stable cache name for *repo_name*."""
    digest = hashlib.sha256(repo_name.encode("utf-8")).hexdigest()
    return f"pack-cache-{digest[:12]}"


@runtime_checkable
class Cache(Protocol):
    """Capability interface consumed by the restore and cache phases."""

    def clear(self) -> None:
        """Remove all cached content, keeping the identity."""
        ...

    def image(self) -> str:
        """Stable identity of the cache."""
        ...

    def phase_args(self) -> list[str]:
        """Arguments telling restore/cache phases where the cache is."""
        ...

    def binds(self) -> list[str]:
        """Extra mounts those phases need."""
        ...


class ImageCache:
    """Cache stored as a local image the phases read and write over the daemon."""

    def __init__(self, repo_name: str, engine: ContainerEngine) -> None:
        self._engine = engine
        self._name = cache_key(repo_name)

    def image(self) -> str:
        return self._name

    def clear(self) -> None:
        try:
            self._engine.remove_image(self._name)
        except Exception as exc:
            raise CacheError(f"clearing cache image {self._name}: {exc}") from exc
        logger.debug("Cleared cache image %s", self._name)

    def phase_args(self) -> list[str]:
        return [f"-image={self._name}"]

    def binds(self) -> list[str]:
        return []


class VolumeCache:
    """Cache stored in a named volume mounted at ``/cache``."""

    def __init__(self, repo_name: str, engine: ContainerEngine) -> None:
        self._engine = engine
        self._name = cache_key(repo_name)

    def image(self) -> str:
        return self._name

    def clear(self) -> None:
        try:
            self._engine.remove_volume(self._name)
            self._engine.create_volume(self._name)
        except Exception as exc:
            raise CacheError(f"clearing cache volume {self._name}: {exc}") from exc
        logger.debug("Cleared cache volume %s", self._name)

    def phase_args(self) -> list[str]:
        return [f"-path={CACHE_MOUNT}"]

    def binds(self) -> list[str]:
        return [f"{self._name}:{CACHE_MOUNT}"]


def new_cache(
    kind: Literal["image", "volume"], repo_name: str, engine: ContainerEngine
) -> Cache:
    """Build the configured cache flavour for *repo_name*."""
    if kind == "volume":
        return VolumeCache(repo_name, engine)
    return ImageCache(repo_name, engine)
