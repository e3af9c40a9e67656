"""Image reference helpers."""

from __future__ import annotations

DEFAULT_REGISTRY = "index.docker.io"

_REGISTRY_ALIASES = {
    "docker.io": DEFAULT_REGISTRY,
    "registry-1.docker.io": DEFAULT_REGISTRY,
}


def normalize_registry(host: str) -> str:
    """Fold Docker Hub aliases and URL decorations into one host name."""
    host = host.removeprefix("https://").removeprefix("http://")
    host = host.split("/", 1)[0]
    return _REGISTRY_ALIASES.get(host, host)


def registry_of(ref: str) -> str:
    """Return the registry host an image reference points at.

    The first path component is a registry only if it looks like a host
    (contains ``.`` or ``:``, or is ``localhost``); otherwise the reference
    is a Docker Hub name.
    """
    name = ref.split("@", 1)[0]
    first, sep, _ = name.partition("/")
    if not sep:
        return DEFAULT_REGISTRY
    if "." in first or ":" in first or first == "localhost":
        return normalize_registry(first)
    return DEFAULT_REGISTRY
