"""Device send actions and their Readeck equivalents."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence

from ..integrations.readeck import BackendError, ReadeckClient
from ..observability.metrics import DEVICE_ACTION_COUNTER


logger = logging.getLogger(__name__)


class ActionKind(str, Enum):
    ARCHIVE = "archive"
    READD = "readd"
    FAVORITE = "favorite"
    UNFAVORITE = "unfavorite"
    DELETE = "delete"
    ADD = "add"
    NOOP = "noop"
    UNKNOWN = "unknown"


UPDATE_FIELDS: Dict[ActionKind, Dict[str, bool]] = {
    ActionKind.ARCHIVE: {"is_archived": True},
    ActionKind.READD: {"is_archived": False},
    ActionKind.FAVORITE: {"is_marked": True},
    ActionKind.UNFAVORITE: {"is_marked": False},
    ActionKind.DELETE: {"is_deleted": True},
}


@dataclass(frozen=True)
class DeviceAction:
    kind: ActionKind
    item_id: Optional[str] = None
    url: Optional[str] = None
    raw_action: str = ""


def _item_id(value: Any) -> Optional[str]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return str(value)
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def parse_action(raw: Any) -> DeviceAction:
    """Turn one loosely typed device action into a :class:`DeviceAction`.

    Anything that cannot be applied becomes ``UNKNOWN``.
    """

    if not isinstance(raw, dict):
        return DeviceAction(ActionKind.UNKNOWN, raw_action=type(raw).__name__)
    name = raw.get("action")
    name = name if isinstance(name, str) else ""
    try:
        kind = ActionKind(name)
    except ValueError:
        return DeviceAction(ActionKind.UNKNOWN, raw_action=name)

    if kind in UPDATE_FIELDS:
        item_id = _item_id(raw.get("item_id"))
        if item_id is None:
            return DeviceAction(ActionKind.UNKNOWN, raw_action=name)
        return DeviceAction(kind, item_id=item_id, raw_action=name)
    if kind is ActionKind.ADD:
        url = raw.get("url")
        if not isinstance(url, str) or not url.strip():
            return DeviceAction(ActionKind.UNKNOWN, raw_action=name)
        return DeviceAction(kind, url=url.strip(), raw_action=name)
    if kind is ActionKind.NOOP:
        return DeviceAction(kind, raw_action=name)
    return DeviceAction(ActionKind.UNKNOWN, raw_action=name)


async def apply_action(client: ReadeckClient, action: DeviceAction) -> bool:
    if action.kind is ActionKind.NOOP:
        return True
    if action.kind is ActionKind.UNKNOWN:
        logger.warning("Ignoring unsupported device action %r", action.raw_action)
        return False
    try:
        if action.kind is ActionKind.ADD:
            await client.create_bookmark(action.url)
        else:
            await client.update_bookmark(action.item_id, UPDATE_FIELDS[action.kind])
    except BackendError as exc:
        logger.warning(
            "Device action %s on %s failed: %s",
            action.kind.value,
            action.item_id or action.url,
            exc,
        )
        return False
    return True


async def apply_actions(client: ReadeckClient, raw_actions: Sequence[Any]) -> List[bool]:
    """Apply actions sequentially; one result per input action, in order."""

    results: List[bool] = []
    for raw in raw_actions:
        action = parse_action(raw)
        ok = await apply_action(client, action)
        DEVICE_ACTION_COUNTER.labels(action.kind.value, "ok" if ok else "failed").inc()
        results.append(ok)
    return results
