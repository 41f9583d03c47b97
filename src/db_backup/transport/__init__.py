"""File transports and the artifact transfer coordinator.

Usage:
    >>> from db_backup.transport import get_transport, ArtifactTransferCoordinator
"""

from db_backup.transport.base import Transport
from db_backup.transport.coordinator import ArtifactTransferCoordinator, StagedArtifact
from db_backup.transport.ssh import RsyncTransport, ScpTransport, get_transport

__all__ = [
    "Transport",
    "ScpTransport",
    "RsyncTransport",
    "get_transport",
    "ArtifactTransferCoordinator",
    "StagedArtifact",
]
