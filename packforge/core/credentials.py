"""Registry credential providers.

Credentials are always passed around as an explicit provider value; the
engine never reads them from ambient process state.  A phase with registry
access receives ``CNB_REGISTRY_AUTH`` scoped to the registries of the
references it is allowed to touch.
"""

from __future__ import annotations

import base64
import json
import logging
from collections.abc import Iterable, Mapping
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict

from packforge.core.reference import normalize_registry, registry_of

logger = logging.getLogger(__name__)

REGISTRY_AUTH_ENV = "CNB_REGISTRY_AUTH"


class RegistryAuth(BaseModel):
    """Credentials for a single registry."""

    model_config = ConfigDict(frozen=True)

    username: str = ""
    password: str = ""
    identity_token: str = ""

    def header(self) -> str:
        """HTTP ``Authorization`` header value for this credential."""
        if self.identity_token:
            return f"Bearer {self.identity_token}"
        raw = f"{self.username}:{self.password}".encode("utf-8")
        return f"Basic {base64.b64encode(raw).decode('ascii')}"

    def auth_config(self) -> dict[str, str]:
        """Mapping accepted by the docker SDK's ``auth_config`` argument."""
        if self.identity_token:
            return {"identitytoken": self.identity_token}
        return {"username": self.username, "password": self.password}


@runtime_checkable
class CredentialProvider(Protocol):
    """Anything that can look up credentials by registry host."""

    def auth_for(self, registry: str) -> RegistryAuth | None:
        ...


class AnonymousCredentials:
    """Provider that never has credentials."""

    def auth_for(self, registry: str) -> RegistryAuth | None:
        return None


class StaticCredentials:
    """Provider backed by an in-memory ``{registry: RegistryAuth}`` table."""

    def __init__(self, auths: Mapping[str, RegistryAuth]) -> None:
        self._auths = {normalize_registry(k): v for k, v in auths.items()}

    def auth_for(self, registry: str) -> RegistryAuth | None:
        return self._auths.get(normalize_registry(registry))


class DockerConfigCredentials:
    """Provider reading the ``auths`` table of a docker ``config.json``.

    Parameters
    ----------
    config_dir:
        Directory holding ``config.json``.  Passed explicitly; the
        ``DOCKER_CONFIG`` environment variable is not consulted.
    """

    def __init__(self, config_dir: Path) -> None:
        self._path = Path(config_dir) / "config.json"
        self._auths: dict[str, RegistryAuth] | None = None

    def _load(self) -> dict[str, RegistryAuth]:
        if not self._path.exists():
            logger.debug("No docker config at %s", self._path)
            return {}
        payload: dict[str, Any] = json.loads(self._path.read_text(encoding="utf-8"))
        auths: dict[str, RegistryAuth] = {}
        for host, entry in payload.get("auths", {}).items():
            parsed = _parse_auth_entry(entry)
            if parsed is not None:
                auths[normalize_registry(host)] = parsed
        return auths

    def auth_for(self, registry: str) -> RegistryAuth | None:
        if self._auths is None:
            self._auths = self._load()
        return self._auths.get(normalize_registry(registry))


def _parse_auth_entry(entry: Mapping[str, Any]) -> RegistryAuth | None:
    if entry.get("identitytoken"):
        return RegistryAuth(identity_token=entry["identitytoken"])
    if entry.get("auth"):
        decoded = base64.b64decode(entry["auth"]).decode("utf-8")
        username, _, password = decoded.partition(":")
        return RegistryAuth(username=username, password=password)
    if entry.get("username"):
        return RegistryAuth(
            username=entry["username"], password=entry.get("password", "")
        )
    return None


def registry_auth_env(provider: CredentialProvider, refs: Iterable[str]) -> dict[str, str]:
    """Build the ``CNB_REGISTRY_AUTH`` variable for exactly *refs*.

    Only registries of the given references are included, so a phase
    never sees credentials for anything else.
    """
    headers: dict[str, str] = {}
    for ref in refs:
        registry = registry_of(ref)
        auth = provider.auth_for(registry)
        if auth is not None:
            headers[registry] = auth.header()
    return {REGISTRY_AUTH_ENV: json.dumps(headers, sort_keys=True)}
