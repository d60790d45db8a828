"""Change-feed reconciliation for device syncs."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Union

from ..integrations.readeck import ReadeckClient
from ..schemas import (
    BookmarkDetail,
    DeviceArticle,
    DeviceAuthor,
    DeviceImage,
    DeviceStatus,
    DeviceTag,
    SyncEvent,
)


logger = logging.getLogger(__name__)

STATUS_ARCHIVED = "1"
STATUS_DELETED = "2"

DeviceItem = Union[DeviceArticle, DeviceStatus]


@dataclass
class SyncResult:
    items: List[DeviceItem] = field(default_factory=list)
    total: int = 0

    def to_device(self) -> Dict[str, Any]:
        """Render the ``/api/kobo/get`` response body."""

        listing: Dict[str, Any] = {}
        for item in self.items:
            listing[item.item_id] = item.model_dump(by_alias=True)
        return {"status": 1, "list": listing, "total": self.total}


def _unix(value: datetime) -> int:
    return int(value.timestamp())


def project_article(detail: BookmarkDetail) -> DeviceArticle:
    """Project a Readeck bookmark onto a full device article entry."""

    lead = detail.lead_image
    if lead is not None:
        has_image = "1"
        image = {"src": lead.src}
        images = {"1": DeviceImage(image_id="1", item_id="1", src=lead.src)}
        optional = {"top_image_url": lead.src}
    else:
        has_image = "0"
        image = {"src": ""}
        images = {}
        optional = {}

    return DeviceArticle(
        item_id=detail.id,
        resolved_id=detail.id,
        given_title=detail.title,
        resolved_title=detail.title,
        given_url=detail.url,
        resolved_url=detail.url,
        excerpt=detail.description,
        favorite="1" if detail.is_marked else "0",
        has_image=has_image,
        image=image,
        images=images,
        tags={label: DeviceTag(item_id=detail.id, tag=label) for label in detail.labels},
        authors={name: DeviceAuthor(author_id=name, name=name) for name in detail.authors},
        time_added=_unix(detail.created),
        time_updated=_unix(detail.updated),
        word_count=detail.word_count or 0,
        optional=optional,
    )


def collapse_events(events: Sequence[SyncEvent]) -> List[SyncEvent]:
    """Keep only the last event per id, at that event's position."""

    last_index: Dict[str, int] = {}
    for index, event in enumerate(events):
        last_index[event.id] = index
    return [event for index, event in enumerate(events) if last_index[event.id] == index]


def apply_window(items: List[DeviceItem], offset: int, count: int) -> List[DeviceItem]:
    """Slice ``items`` by the device's offset/count; ``count == 0`` means all."""

    if offset > 0:
        items = items[offset:]
    if count > 0:
        items = items[:count]
    return items


async def reconcile(
    client: ReadeckClient,
    since: Optional[datetime] = None,
    *,
    offset: int = 0,
    count: int = 0,
) -> SyncResult:
    """Build the device listing for a full (``since`` is None) or incremental sync.

    Backend errors propagate and abort the sync.
    """

    incremental = since is not None
    events = collapse_events(await client.list_changes(since))
    candidates = [event.id for event in events if event.type == "update"]
    details = await client.fetch_details_batch(candidates)
    logger.debug(
        "Reconciling %d events (%d updates, incremental=%s)",
        len(events),
        len(candidates),
        incremental,
    )

    items: List[DeviceItem] = []
    total = 0
    for event in events:
        if event.type == "delete":
            if incremental:
                items.append(DeviceStatus(item_id=event.id, status=STATUS_DELETED))
            continue

        detail = details.get(event.id)
        if detail is None:
            logger.debug("Bookmark %s missing from batch response; dropping", event.id)
            continue

        if detail.is_deleted:
            if incremental:
                items.append(DeviceStatus(item_id=detail.id, status=STATUS_DELETED))
            continue
        if detail.is_archived:
            if incremental:
                items.append(DeviceStatus(item_id=detail.id, status=STATUS_ARCHIVED))
            continue

        items.append(project_article(detail))
        total += 1

    return SyncResult(items=apply_window(items, offset, count), total=total)
