"""Ephemeral workspace volume and the tar-based filesystem copier.

The workspace is a single engine volume shared by every phase of one
build, mounted at ``/workspace``.  Content reaches it as a tar stream
unpacked through a short-lived helper container, which preserves modes
and the ownership recorded in each tar header.
"""

from __future__ import annotations

import io
import logging
import posixpath
import tarfile
import time
import uuid
from pathlib import Path

from packforge.core.engine import ContainerEngine
from packforge.core.errors import WorkspaceError
from packforge.models.images import ContainerSpec

logger = logging.getLogger(__name__)

WORKSPACE_DIR = "/workspace"


class TarBuilder:
    """Assemble an in-memory tar stream with fixed ownership.

    Parameters
    ----------
    uid, gid:
        Owner written into every header.
    mtime:
        Modification time for synthesized entries.  Copied files keep
        their own mtime.
    """

    def __init__(self, uid: int = 0, gid: int = 0, *, mtime: float | None = None) -> None:
        self.uid = uid
        self.gid = gid
        self._mtime = int(mtime if mtime is not None else time.time())
        self._buffer = io.BytesIO()
        self._tar = tarfile.open(fileobj=self._buffer, mode="w")
        self._dirs: set[str] = set()

    def _own(self, info: tarfile.TarInfo) -> tarfile.TarInfo:
        info.uid = self.uid
        info.gid = self.gid
        info.uname = ""
        info.gname = ""
        return info

    def _ensure_parents(self, name: str) -> None:
        parent = posixpath.dirname(name)
        if parent and parent not in self._dirs:
            self.add_directory(parent)

    def add_directory(self, name: str, mode: int = 0o755) -> None:
        name = name.strip("/")
        if not name or name in self._dirs:
            return
        self._ensure_parents(name)
        info = tarfile.TarInfo(name)
        info.type = tarfile.DIRTYPE
        info.mode = mode
        info.mtime = self._mtime
        self._tar.addfile(self._own(info))
        self._dirs.add(name)

    def add_file(self, name: str, data: bytes, mode: int = 0o644) -> None:
        name = name.strip("/")
        self._ensure_parents(name)
        info = tarfile.TarInfo(name)
        info.size = len(data)
        info.mode = mode
        info.mtime = self._mtime
        self._tar.addfile(self._own(info), io.BytesIO(data))

    def add_symlink(self, name: str, target: str) -> None:
        name = name.strip("/")
        self._ensure_parents(name)
        info = tarfile.TarInfo(name)
        info.type = tarfile.SYMTYPE
        info.linkname = target
        info.mode = 0o777
        info.mtime = self._mtime
        self._tar.addfile(self._own(info))

    def add_tree(self, src: Path, name: str) -> None:
        """Copy a local directory tree, keeping file modes."""
        src = Path(src)
        if not src.is_dir():
            raise WorkspaceError(f"'{src}' is not a directory")
        name = name.strip("/")
        self._ensure_parents(name)

        def _filter(info: tarfile.TarInfo) -> tarfile.TarInfo:
            if info.isdir():
                self._dirs.add(info.name)
            return self._own(info)

        self._tar.add(str(src), arcname=name, recursive=True, filter=_filter)

    def build(self) -> bytes:
        self._tar.close()
        return self._buffer.getvalue()


def read_single_file(archive: bytes) -> bytes:
    """Extract the only regular file from a tar stream."""
    with tarfile.open(fileobj=io.BytesIO(archive), mode="r") as tar:
        for member in tar.getmembers():
            if member.isfile():
                handle = tar.extractfile(member)
                if handle is not None:
                    return handle.read()
    raise WorkspaceError("archive contains no regular file")


class WorkspaceVolume:
    """One build's scratch volume.

    Parameters
    ----------
    engine:
        Container engine the volume lives in.
    helper_image:
        Image used for the helper containers that copy content in and out.
        The builder image is always available, so it is used here.
    name:
        Volume name.  Generated as ``pack-workspace-<random>`` if omitted.
    """

    def __init__(
        self,
        engine: ContainerEngine,
        helper_image: str,
        name: str | None = None,
    ) -> None:
        self._engine = engine
        self._helper_image = helper_image
        self.name = name or f"pack-workspace-{uuid.uuid4().hex[:10]}"
        self.created = False

    @property
    def bind(self) -> str:
        """Bind string mounting the volume read-write at ``/workspace``."""
        return f"{self.name}:{WORKSPACE_DIR}"

    def create(self) -> None:
        try:
            self._engine.create_volume(self.name)
        except Exception as exc:
            raise WorkspaceError(f"create workspace volume {self.name}: {exc}") from exc
        self.created = True
        logger.debug("Created workspace volume %s", self.name)

    def destroy(self) -> None:
        """Remove the volume.  Raises if the engine refuses."""
        if not self.created:
            return
        self._engine.remove_volume(self.name)
        self.created = False
        logger.debug("Removed workspace volume %s", self.name)

    def _helper(self) -> str:
        return self._engine.create_container(
            ContainerSpec(
                image=self._helper_image,
                cmd=["true"],
                user="root",
                binds=[self.bind],
                labels={"author": "packforge"},
            )
        )

    def copy_in(self, archive: bytes, dest: str = "/") -> None:
        """Unpack a tar stream into the volume.

        Archive member names are relative to *dest* inside the helper, so
        ``workspace/app/x`` with the default *dest* lands at ``/workspace/app/x``.
        """
        container_id = self._helper()
        try:
            self._engine.put_archive(container_id, dest, archive)
        except Exception as exc:
            raise WorkspaceError(f"copy into workspace {self.name}: {exc}") from exc
        finally:
            self._engine.remove_container(container_id)

    def read_file(self, path: str) -> bytes:
        """Return the contents of a single file inside the volume."""
        container_id = self._helper()
        try:
            archive = self._engine.get_archive(container_id, path)
        except Exception as exc:
            raise WorkspaceError(f"read {path} from workspace {self.name}: {exc}") from exc
        finally:
            self._engine.remove_container(container_id)
        return read_single_file(archive)
