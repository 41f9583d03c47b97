"""In-memory bookkeeping of the artifacts produced by one run.

Usage:
    from db_backup.pipeline.artifacts import ArtifactStore

    store = ArtifactStore()
    store.add(artifact)
    dump = store.find("app", ArtifactFormat.BINARY_DUMP)
"""

from collections.abc import Iterator

from db_backup.models import ArtifactFormat, BackupArtifact


class ArtifactStore:
    """Tracks one ``BackupArtifact`` per artifact name for the duration of a run.

    ``update()`` replaces an artifact with its moved copy, so the store
    always points at the artifact's latest location.
    """

    def __init__(self) -> None:
        self._artifacts: dict[str, BackupArtifact] = {}

    def __len__(self) -> int:
        return len(self._artifacts)

    def __iter__(self) -> Iterator[BackupArtifact]:
        return iter(list(self._artifacts.values()))

    def add(self, artifact: BackupArtifact) -> None:
        if artifact.name in self._artifacts:
            raise ValueError(f"Artifact '{artifact.name}' is already tracked")
        self._artifacts[artifact.name] = artifact

    def update(self, artifact: BackupArtifact) -> None:
        if artifact.name not in self._artifacts:
            raise KeyError(artifact.name)
        self._artifacts[artifact.name] = artifact

    def get(self, name: str) -> BackupArtifact:
        return self._artifacts[name]

    def for_dataset(self, dataset: str) -> list[BackupArtifact]:
        return [a for a in self._artifacts.values() if a.dataset == dataset]

    def find(self, dataset: str, format: ArtifactFormat) -> BackupArtifact | None:
        """First artifact of ``dataset`` in ``format``, if any."""
        for artifact in self.for_dataset(dataset):
            if artifact.format == format:
                return artifact
        return None
