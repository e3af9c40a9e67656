"""``ContainerEngine`` implementation backed by the docker SDK."""

from __future__ import annotations

import logging
from collections.abc import Iterator

import docker
import docker.errors
import requests.exceptions
import urllib3.exceptions

from packforge.core.credentials import RegistryAuth
from packforge.models.images import ContainerSpec, ImageInfo

logger = logging.getLogger(__name__)


def _image_info(ref: str, attrs: dict) -> ImageInfo:
    config = attrs.get("Config") or {}
    rootfs = attrs.get("RootFS") or {}
    return ImageInfo(
        ref=ref,
        id=attrs.get("Id", ""),
        repo_digests=attrs.get("RepoDigests") or [],
        labels=config.get("Labels") or {},
        env=config.get("Env") or [],
        layers=rootfs.get("Layers") or [],
    )


class DockerEngine:
    """Thin adapter from the docker SDK to ``ContainerEngine``.

    Parameters
    ----------
    client:
        A ``docker.DockerClient``.  Built from the environment if omitted.
    """

    def __init__(self, client: docker.DockerClient | None = None) -> None:
        self._client = client if client is not None else docker.from_env()

    # ------------------------------------------------------------------
    # Containers
    # ------------------------------------------------------------------

    def create_container(self, spec: ContainerSpec) -> str:
        kwargs: dict = {
            "command": spec.cmd,
            "environment": spec.env or None,
            "volumes": spec.binds or None,
            "labels": spec.labels or None,
            "detach": True,
        }
        if spec.user:
            kwargs["user"] = spec.user
        if spec.network_mode:
            kwargs["network_mode"] = spec.network_mode
        container = self._client.containers.create(spec.image, **kwargs)
        logger.debug("Created container %s from %s", container.id[:12], spec.image)
        return container.id

    def start_container(self, container_id: str) -> None:
        self._client.api.start(container_id)

    def wait_container(self, container_id: str, timeout: float | None = None) -> int | None:
        try:
            result = self._client.api.wait(container_id, timeout=timeout)
        except requests.exceptions.ReadTimeout:
            return None
        except requests.exceptions.ConnectionError as exc:
            # A read timeout on the unix socket arrives wrapped in ConnectionError.
            if exc.args and isinstance(exc.args[0], urllib3.exceptions.ReadTimeoutError):
                return None
            raise
        return int(result.get("StatusCode", -1))

    def container_output(self, container_id: str) -> Iterator[tuple[str, bytes]]:
        stream = self._client.api.attach(
            container_id, stdout=True, stderr=True, stream=True, logs=True, demux=True
        )
        for stdout, stderr in stream:
            if stdout:
                yield "stdout", stdout
            if stderr:
                yield "stderr", stderr

    def kill_container(self, container_id: str) -> None:
        try:
            self._client.api.kill(container_id)
        except docker.errors.APIError as exc:
            # 404: already gone, 409: not running
            if exc.status_code not in (404, 409):
                raise

    def remove_container(self, container_id: str) -> None:
        try:
            self._client.api.remove_container(container_id, force=True)
        except docker.errors.NotFound:
            logger.debug("Container %s already removed", container_id[:12])

    def put_archive(self, container_id: str, path: str, data: bytes) -> None:
        if not self._client.api.put_archive(container_id, path, data):
            raise docker.errors.APIError(f"put_archive to {path} was rejected")

    def get_archive(self, container_id: str, path: str) -> bytes:
        chunks, _stat = self._client.api.get_archive(container_id, path)
        return b"".join(chunks)

    # ------------------------------------------------------------------
    # Volumes
    # ------------------------------------------------------------------

    def create_volume(self, name: str) -> None:
        self._client.volumes.create(name=name, labels={"author": "packforge"})

    def remove_volume(self, name: str) -> None:
        try:
            self._client.api.remove_volume(name, force=True)
        except docker.errors.NotFound:
            logger.debug("Volume %s already removed", name)

    # ------------------------------------------------------------------
    # Images
    # ------------------------------------------------------------------

    def inspect_image(self, ref: str) -> ImageInfo | None:
        try:
            attrs = self._client.api.inspect_image(ref)
        except docker.errors.ImageNotFound:
            return None
        return _image_info(ref, attrs)

    def inspect_remote_image(self, ref: str, auth: RegistryAuth | None = None) -> ImageInfo | None:
        """Inspect *ref* as its registry serves it.

        The SDK only exposes labels and env for local images, so this pulls
        *ref* into the daemon and leaves it there.  When publishing, the run
        image and the previous and exported app images all end up in the
        local image store as a side effect.
        """
        if not self._pull(ref, auth):
            return None
        return self.inspect_image(ref)

    def pull_image(self, ref: str, auth: RegistryAuth | None = None) -> None:
        """Pull *ref*.  An unknown reference is a no-op; ``inspect_image``
        then reports it missing."""
        self._pull(ref, auth)

    def _pull(self, ref: str, auth: RegistryAuth | None) -> bool:
        logger.debug("Pulling %s", ref)
        try:
            self._client.images.pull(
                ref, auth_config=auth.auth_config() if auth is not None else None
            )
        except docker.errors.NotFound:
            logger.debug("%s not found in its registry", ref)
            return False
        return True

    def remove_image(self, ref: str) -> None:
        try:
            self._client.api.remove_image(ref, force=True)
        except docker.errors.ImageNotFound:
            logger.debug("Image %s already removed", ref)
