"""Shared value types: artifacts, their formats and locations, severities.

These models are used by adapters, the transfer coordinator, the object
store, and the pipeline alike, so they live at the package root with no
internal dependencies.

Usage:
    from db_backup.models import ArtifactFormat, ArtifactLocation, BackupArtifact

    artifact = BackupArtifact(
        name="app.dump",
        dataset="app",
        format=ArtifactFormat.BINARY_DUMP,
        location=ArtifactLocation.in_container("app-db", "/tmp/app.dump"),
    )
"""

from enum import Enum

from pydantic import BaseModel


class ArtifactFormat(str, Enum):
    """On-disk format of a captured artifact."""

    BINARY_DUMP = "binary_dump"  # pg_dump -F c
    PLAIN_TEXT = "plain_text"  # pg_dump -F p
    RAW_TREE = "raw_tree"  # directory (mongodump output, bucket contents)


class LocationKind(str, Enum):
    LOCAL = "local"
    HOST = "host"
    CONTAINER = "container"


class Severity(str, Enum):
    """Notification severity."""

    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"


class ArtifactLocation(BaseModel):
    """Where an artifact currently lives.

    ``host`` is the remote host target (``user@address``) for ``HOST``
    locations, and the host running the container for ``CONTAINER``
    locations (``None`` means the local Docker daemon).
    """

    kind: LocationKind
    path: str
    host: str | None = None
    container: str | None = None

    @classmethod
    def local(cls, path: str) -> "ArtifactLocation":
        return cls(kind=LocationKind.LOCAL, path=str(path))

    @classmethod
    def on_host(cls, host: str, path: str) -> "ArtifactLocation":
        return cls(kind=LocationKind.HOST, host=host, path=str(path))

    @classmethod
    def in_container(
        cls, container: str, path: str, host: str | None = None
    ) -> "ArtifactLocation":
        return cls(
            kind=LocationKind.CONTAINER,
            container=container,
            host=host,
            path=str(path),
        )

    def __str__(self) -> str:
        if self.kind == LocationKind.CONTAINER:
            prefix = f"{self.host}/" if self.host else ""
            return f"{prefix}{self.container}:{self.path}"
        if self.kind == LocationKind.HOST:
            return f"{self.host}:{self.path}"
        return self.path


class BackupArtifact(BaseModel):
    """One captured unit of backup data.

    Attributes:
        name: Logical artifact name (also the file or directory name).
        dataset: Name of the dataset the artifact was captured from.
        format: Native dump format.
        location: Current location of the artifact.
        size_bytes: Size at capture or after the last successful stage.
        signature: Row/document/file count at capture time, when known.
    """

    name: str
    dataset: str
    format: ArtifactFormat
    location: ArtifactLocation
    size_bytes: int = 0
    signature: int | None = None

    @property
    def is_tree(self) -> bool:
        return self.format == ArtifactFormat.RAW_TREE

    def moved_to(self, location: ArtifactLocation, size_bytes: int) -> "BackupArtifact":
        """Return a copy of this artifact at a new location."""
        return self.model_copy(update={"location": location, "size_bytes": size_bytes})
