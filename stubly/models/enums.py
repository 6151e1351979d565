"""
Shared Enumerations for Stubly Models.

StrEnum values compare equal to their string equivalents, so rows read
back from SQLite (plain strings) compare cleanly against these members.
"""

from __future__ import annotations

from enum import StrEnum


class AuthMode(StrEnum):
    """Which backend the current session was authenticated against.

    ``PENDING`` covers both "still initialising" and "not signed in";
    ``AuthState.is_loading`` tells the two apart.
    """

    ONLINE = "online"
    OFFLINE = "offline"
    PENDING = "pending"


class AuthErrorCode(StrEnum):
    """Exhaustive enumeration of auth and sync failure categories."""

    DUPLICATE_USERNAME = "duplicate_username"
    INVALID_CREDENTIALS = "invalid_credentials"
    RATE_LIMITED = "rate_limited"
    NETWORK_UNAVAILABLE = "network_unavailable"
    REMOTE_SERVICE_ERROR = "remote_service_error"
    LOCAL_STORE_UNAVAILABLE = "local_store_unavailable"
    REGISTRATION_UNAVAILABLE = "registration_unavailable"
    LOGIN_FAILED = "login_failed"
    VALIDATION_ERROR = "validation_error"
    SESSION_EXPIRED = "session_expired"
    SYNC_FAILED = "sync_failed"
    UNKNOWN_ERROR = "unknown_error"


class MountPlatform(StrEnum):
    """Where a mount physically lives."""

    ANDROID = "Android"
    WINDOWS = "Windows"
    WASABI = "Wasabi"


class StorageType(StrEnum):
    """Storage class of a mount."""

    CLOUD = "cloud"
    CLOUD_LOCAL = "cloud_local"
    LOCAL = "local"


class FileType(StrEnum):
    """Media type of a file entry."""

    IMAGE = "image"
    VIDEO = "video"
    AUDIO = "audio"
    URL = "url"
