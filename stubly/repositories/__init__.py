"""
Repository Layer.

SQL access to the two local databases.  Repositories receive a
``LocalDatabase`` and a ``StructuredLogger`` via ``__init__``.
"""

from stubly.repositories.base_repository import BaseRepository
from stubly.repositories.credential_repository import CredentialRepository
from stubly.repositories.mirror_repository import MirrorRepository

__all__ = [
    "BaseRepository",
    "CredentialRepository",
    "MirrorRepository",
]
