"""
Data Models Package.

Re-exports all Pydantic models for convenient imports:
    from stubly.models import AuthResult, AuthState, LocalUser, SecureSession
    from stubly.models import AuthMode, AuthErrorCode
    from stubly.models import Mount, FileRecord, SYNC_ORDER
"""

from __future__ import annotations

from stubly.models.auth_models import (
    AuthResult,
    AuthState,
    LocalUser,
    LoginAttempt,
    RateLimitStatus,
    RemoteAuthResponse,
    RemoteSession,
    RemoteUser,
    SecureSession,
)
from stubly.models.enums import (
    AuthErrorCode,
    AuthMode,
    FileType,
    MountPlatform,
    StorageType,
)
from stubly.models.mirror_models import (
    MIRROR_MODELS,
    SYNC_ORDER,
    FileRecord,
    FileTag,
    Location,
    MirrorRecord,
    Mount,
    Post,
    Source,
    Tag,
)

__all__ = [
    "AuthErrorCode",
    "AuthMode",
    "AuthResult",
    "AuthState",
    "FileRecord",
    "FileTag",
    "FileType",
    "LocalUser",
    "Location",
    "LoginAttempt",
    "MIRROR_MODELS",
    "MirrorRecord",
    "Mount",
    "MountPlatform",
    "Post",
    "RateLimitStatus",
    "RemoteAuthResponse",
    "RemoteSession",
    "RemoteUser",
    "SYNC_ORDER",
    "SecureSession",
    "Source",
    "StorageType",
    "Tag",
]
