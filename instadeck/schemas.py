from datetime import datetime, timezone
import logging
from typing import Annotated, Any, Dict, List, Literal, Optional

from pydantic import (
    AliasChoices,
    BaseModel,
    BeforeValidator,
    ConfigDict,
    Field,
    field_validator,
)

from . import __version__


logger = logging.getLogger(__name__)

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def _coerce_id(value: Any) -> Any:
    if isinstance(value, int) and not isinstance(value, bool):
        return str(value)
    return value


def _coerce_non_negative_int(value: Any) -> int:
    if isinstance(value, bool) or value is None:
        return 0
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    if isinstance(value, str):
        try:
            value = int(value.strip())
        except ValueError:
            return 0
    if isinstance(value, int):
        return max(value, 0)
    return 0


ItemId = Annotated[str, BeforeValidator(_coerce_id)]


class StatusResponse(BaseModel):
    status: str = "ok"
    version: str = __version__


# ---------------------------------------------------------------------------
# Readeck payloads


class ResourceImage(BaseModel):
    model_config = ConfigDict(extra="ignore")

    src: str = ""
    width: int = 0
    height: int = 0


class BookmarkResources(BaseModel):
    model_config = ConfigDict(extra="ignore")

    image: Optional[ResourceImage] = None
    thumbnail: Optional[ResourceImage] = None


class BookmarkDetail(BaseModel):
    """A Readeck bookmark as returned by the detail, search and batch APIs."""

    model_config = ConfigDict(extra="ignore")

    id: ItemId
    title: str = ""
    description: str = ""
    url: str = ""
    site: str = ""
    created: datetime = EPOCH
    updated: datetime = EPOCH
    is_archived: bool = False
    is_marked: bool = False
    is_deleted: bool = False
    labels: List[str] = Field(default_factory=list)
    authors: List[str] = Field(default_factory=list)
    word_count: Optional[int] = None
    resources: BookmarkResources = Field(default_factory=BookmarkResources)

    @field_validator("title", "description", "url", "site", mode="before")
    @classmethod
    def none_to_empty(cls, value: Any) -> Any:
        return "" if value is None else value

    @field_validator("is_archived", "is_marked", "is_deleted", mode="before")
    @classmethod
    def none_to_false(cls, value: Any) -> Any:
        return False if value is None else value

    @field_validator("created", "updated", mode="before")
    @classmethod
    def missing_to_epoch(cls, value: Any) -> Any:
        if value is None or value == "":
            return EPOCH
        return value

    @field_validator("created", "updated")
    @classmethod
    def assume_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    @field_validator("labels", "authors", mode="before")
    @classmethod
    def none_to_list(cls, value: Any) -> Any:
        return [] if value is None else value

    @field_validator("labels")
    @classmethod
    def unique_labels(cls, value: List[str]) -> List[str]:
        return list(dict.fromkeys(value))

    @field_validator("resources", mode="before")
    @classmethod
    def none_to_resources(cls, value: Any) -> Any:
        return {} if value is None else value

    @property
    def lead_image(self) -> Optional[ResourceImage]:
        image = self.resources.image
        if image is not None and image.src:
            return image
        return None


class SyncEvent(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: ItemId
    type: Literal["update", "delete"]
    time: Optional[datetime] = None


# ---------------------------------------------------------------------------
# Device protocol


class DeviceImage(BaseModel):
    image_id: str
    item_id: str
    src: str


class DeviceTag(BaseModel):
    item_id: str
    tag: str


class DeviceAuthor(BaseModel):
    author_id: str
    name: str


class DeviceArticle(BaseModel):
    """Full article entry in a sync ``list``."""

    model_config = ConfigDict(populate_by_name=True)

    item_id: str
    resolved_id: str
    given_title: str
    resolved_title: str
    given_url: str
    resolved_url: str
    excerpt: str
    favorite: Literal["0", "1"]
    status: Literal["0"] = "0"
    is_article: str = "1"
    has_image: Literal["0", "1"]
    has_video: str = "0"
    image: Dict[str, str]
    images: Dict[str, DeviceImage]
    videos: List[Any] = Field(default_factory=list)
    tags: Dict[str, DeviceTag]
    authors: Dict[str, DeviceAuthor]
    time_added: int
    time_updated: int
    time_read: int = 0
    word_count: int = 0
    optional: Dict[str, str] = Field(default_factory=dict, alias="_optional")


class DeviceStatus(BaseModel):
    """Status-only entry telling the device to archive (1) or delete (2)."""

    item_id: str
    status: Literal["1", "2"]


class DeviceRequest(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    access_token: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("access_token", "accessToken"),
    )
    consumer_key: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("consumer_key", "consumerKey"),
    )


class SyncRequest(DeviceRequest):
    count: int = 0
    offset: int = 0
    since: Optional[datetime] = None

    @field_validator("count", "offset", mode="before")
    @classmethod
    def lenient_int(cls, value: Any) -> int:
        return _coerce_non_negative_int(value)

    @field_validator("since", mode="before")
    @classmethod
    def epoch_seconds(cls, value: Any) -> Optional[datetime]:
        if value is None:
            return None
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            logger.warning("Ignoring non-numeric sync cursor %r; running a full sync", value)
            return None
        try:
            return datetime.fromtimestamp(value, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            logger.warning("Ignoring out-of-range sync cursor %r; running a full sync", value)
            return None


class DownloadRequest(DeviceRequest):
    url: Optional[str] = None
    images: Optional[Any] = None
    refresh: Optional[Any] = None
    output: Optional[Any] = None


class SendRequest(DeviceRequest):
    actions: List[Any] = Field(default_factory=list)

    @field_validator("actions", mode="before")
    @classmethod
    def none_to_list(cls, value: Any) -> Any:
        return [] if value is None else value


class DownloadResponse(BaseModel):
    article: str
    images: Dict[str, DeviceImage]


class SendResponse(BaseModel):
    status: bool
    action_results: List[bool]
