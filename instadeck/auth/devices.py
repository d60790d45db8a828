"""Device token lookup.

Device tokens are opaque pre-shared values (for example a UUID4 from
``instadeck generate-token``). Each maps to one Readeck API token.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional

from fastapi import HTTPException, status

from ..config import DeviceUserConfig, load_device_users


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DeviceUser:
    name: str
    device_token: str
    readeck_token: str

    def __repr__(self) -> str:
        return f"DeviceUser(name={self.name!r})"


class DeviceRegistry:
    """Immutable device-token to :class:`DeviceUser` lookup."""

    def __init__(self, users: Iterable[DeviceUser] = ()) -> None:
        self._users: Dict[str, DeviceUser] = {}
        for user in users:
            self._users[user.device_token] = user

    @classmethod
    def from_config(cls, entries: Dict[str, DeviceUserConfig]) -> "DeviceRegistry":
        return cls(
            DeviceUser(name=entry.name, device_token=token, readeck_token=entry.readeck_token)
            for token, entry in entries.items()
        )

    def lookup(self, token: Optional[str]) -> Optional[DeviceUser]:
        if not token:
            return None
        return self._users.get(token)

    @property
    def names(self) -> List[str]:
        return sorted(user.name for user in self._users.values())

    def __len__(self) -> int:
        return len(self._users)


def get_device_registry() -> DeviceRegistry:
    """FastAPI dependency returning the configured registry."""

    return DeviceRegistry.from_config(load_device_users())


def authenticate_device(token: Optional[str], registry: DeviceRegistry) -> DeviceUser:
    user = registry.lookup(token.strip() if isinstance(token, str) else None)
    if user is None:
        logger.info("Rejected device request with %s access token", "an unknown" if token else "no")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid access token")
    logger.debug("Authenticated device request for %s", user.name)
    return user
