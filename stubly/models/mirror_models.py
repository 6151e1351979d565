"""
Mirrored Entity Models.

One Pydantic model per table that the sync reconciler copies from the
remote store into the local mirror.  Field order matches the local
column order; unknown remote columns are ignored so that a newer server
schema never breaks an older client.
"""

from __future__ import annotations

from typing import Annotated, ClassVar, Optional, Union

from pydantic import BaseModel, BeforeValidator

from stubly.models.enums import FileType, MountPlatform, StorageType

# Remote file ids are bigint, the local mirror stores them as TEXT.
FileId = Annotated[str, BeforeValidator(lambda v: str(v) if isinstance(v, int) else v)]

SqliteValue = Union[None, int, float, str]


class MirrorRecord(BaseModel):
    """Base class for mirrored rows.

    Subclasses declare ``TABLE`` and ``PRIMARY_KEY``.  Columns listed in
    ``DEFAULTED_COLUMNS`` are omitted from inserts when the remote row
    carries no value, so the local column default applies.
    """

    TABLE: ClassVar[str] = ""
    PRIMARY_KEY: ClassVar[tuple[str, ...]] = ()
    DEFAULTED_COLUMNS: ClassVar[frozenset[str]] = frozenset(
        {"create_date", "modified_date"}
    )

    model_config = {"extra": "ignore", "use_enum_values": True}

    def to_record(self) -> dict[str, SqliteValue]:
        """Return the row as SQLite-ready values (booleans as 0/1)."""
        record: dict[str, SqliteValue] = {}
        for column, value in self.model_dump().items():
            if value is None and column in self.DEFAULTED_COLUMNS:
                continue
            if isinstance(value, bool):
                value = int(value)
            record[column] = value
        return record


class Mount(MirrorRecord):
    TABLE: ClassVar[str] = "mounts"
    PRIMARY_KEY: ClassVar[tuple[str, ...]] = ("mount_id",)

    mount_id: int
    user_id: str
    platform: MountPlatform
    mount_label: str
    device_id: Optional[str] = None
    device_path: str
    storage_type: StorageType = StorageType.CLOUD
    encryption_enabled: bool = False
    encryption_type: Optional[str] = None
    encryption_key_hash: Optional[str] = None
    create_date: Optional[str] = None
    is_active: bool = True


class FileRecord(MirrorRecord):
    TABLE: ClassVar[str] = "files"
    PRIMARY_KEY: ClassVar[tuple[str, ...]] = ("user_id", "file_id")

    user_id: str
    file_id: FileId
    hash: Optional[str] = None
    phash: Optional[str] = None
    phash_algorithm: Optional[str] = None
    type: FileType
    mime_type: Optional[str] = None
    local_size: Optional[int] = None
    format: Optional[str] = None
    width: Optional[int] = None
    height: Optional[int] = None
    duration: Optional[float] = None
    video_codec: Optional[str] = None
    video_bitrate: Optional[int] = None
    video_framerate: Optional[float] = None
    video_color_space: Optional[str] = None
    video_bit_depth: Optional[int] = None
    audio_codec: Optional[str] = None
    audio_bitrate: Optional[int] = None
    audio_sample_rate: Optional[int] = None
    audio_channels: Optional[int] = None
    user_description: Optional[str] = None
    create_date: Optional[str] = None
    modified_date: Optional[str] = None
    user_edited_date: Optional[str] = None


class Location(MirrorRecord):
    TABLE: ClassVar[str] = "locations"
    PRIMARY_KEY: ClassVar[tuple[str, ...]] = ("location_id",)

    location_id: int
    user_id: str
    file_id: FileId
    mount_id: int
    file_path: str
    has_thumb: bool = False
    thumb_width: Optional[int] = None
    thumb_height: Optional[int] = None
    has_preview: bool = False
    has_sprite: bool = False
    sync_date: Optional[str] = None
    local_modified: Optional[str] = None


class Tag(MirrorRecord):
    TABLE: ClassVar[str] = "tags"
    PRIMARY_KEY: ClassVar[tuple[str, ...]] = ("tag_id",)

    tag_id: int
    user_id: str
    namespace: Optional[str] = None
    tag_name: str
    remote_tag_id: Optional[int] = None
    usage_count: int = 0
    create_date: Optional[str] = None
    modified_date: Optional[str] = None


class FileTag(MirrorRecord):
    TABLE: ClassVar[str] = "file_tags"
    PRIMARY_KEY: ClassVar[tuple[str, ...]] = ("user_id", "file_id", "tag_id")

    user_id: str
    file_id: FileId
    tag_id: int
    create_date: Optional[str] = None
    modified_date: Optional[str] = None


class Source(MirrorRecord):
    TABLE: ClassVar[str] = "source"
    PRIMARY_KEY: ClassVar[tuple[str, ...]] = ("user_id", "file_id", "url")

    user_id: str
    file_id: FileId
    url: str
    content_type: Optional[str] = None
    remote_size: Optional[int] = None
    is_file: bool = True
    url_source: Optional[str] = None
    iframe: bool = False
    embed: Optional[str] = None
    modified_date: Optional[str] = None


class Post(MirrorRecord):
    TABLE: ClassVar[str] = "posts"
    PRIMARY_KEY: ClassVar[tuple[str, ...]] = ("post_id",)

    post_id: int
    user_id: str
    file_id: FileId
    url: str
    domain: Optional[str] = None
    post_date: Optional[str] = None
    post_text: Optional[str] = None
    post_user: Optional[str] = None
    title: Optional[str] = None
    create_date: Optional[str] = None
    modified_date: Optional[str] = None


# Foreign-key targets come before their dependents.
SYNC_ORDER: tuple[type[MirrorRecord], ...] = (
    Mount,
    FileRecord,
    Location,
    Tag,
    FileTag,
    Source,
    Post,
)

MIRROR_MODELS: dict[str, type[MirrorRecord]] = {
    model.TABLE: model for model in SYNC_ORDER
}
