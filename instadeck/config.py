"""Application configuration helpers read from the process environment."""

from __future__ import annotations

import json
import logging
import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

from pydantic import BaseModel, ValidationError


logger = logging.getLogger(__name__)

DEFAULT_BACKEND_TIMEOUT = 10.0
DEFAULT_IMAGE_TIMEOUT = 5.0
DEFAULT_IMAGE_MAX_BYTES = 15 * 1024 * 1024
USERS_FILE_NAME = "instadeck_users.json"

__all__ = [
    "ConfigError",
    "DeviceUserConfig",
    "resolve_config_dir",
    "get_readeck_url",
    "get_backend_timeout",
    "get_image_timeout",
    "get_image_max_bytes",
    "load_device_users",
    "clear_config_caches",
]


class ConfigError(RuntimeError):
    """Raised when the environment or users file holds an invalid value."""


class DeviceUserConfig(BaseModel):
    name: str
    device_token: str
    readeck_token: str


class _UsersFile(BaseModel):
    users: List[DeviceUserConfig] = []


def _read_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        parsed = float(value)
    except ValueError:
        logger.warning("Ignoring non-numeric %s=%r; using %s", name, value, default)
        return default
    if parsed <= 0:
        logger.warning("Ignoring non-positive %s=%r; using %s", name, value, default)
        return default
    return parsed


def resolve_config_dir(explicit: Optional[str] = None) -> str:
    """Resolve the directory holding the users file."""

    if isinstance(explicit, str) and explicit.strip():
        return explicit.strip()
    for key in ("INSTADECK_CONFIG_DIR", "CONFIG_DIR"):
        value = os.getenv(key)
        if value:
            return value
    return "."


@lru_cache(maxsize=1)
def get_readeck_url() -> str:
    """Return the validated Readeck base URL from ``READECK_URL``."""

    value = (os.getenv("READECK_URL") or "").strip()
    if not value:
        raise ConfigError("READECK_URL is not set. Point it at the Readeck server, e.g. https://readeck.example.com")
    parsed = urlparse(value)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ConfigError(f"READECK_URL must be an absolute http(s) URL, got {value!r}")
    return value.rstrip("/")


@lru_cache(maxsize=1)
def get_backend_timeout() -> float:
    """Deadline in seconds applied to every Readeck call."""

    return _read_float("READECK_TIMEOUT", DEFAULT_BACKEND_TIMEOUT)


@lru_cache(maxsize=1)
def get_image_timeout() -> float:
    return _read_float("IMAGE_FETCH_TIMEOUT", DEFAULT_IMAGE_TIMEOUT)


@lru_cache(maxsize=1)
def get_image_max_bytes() -> int:
    return int(_read_float("IMAGE_MAX_BYTES", DEFAULT_IMAGE_MAX_BYTES))


def _users_file_path(config_dir: Optional[str] = None) -> Path:
    explicit = os.getenv("INSTADECK_USERS_FILE")
    if explicit and explicit.strip():
        return Path(explicit.strip())
    return Path(resolve_config_dir(config_dir)) / USERS_FILE_NAME


def _load_users_file(path: Path) -> List[DeviceUserConfig]:
    if not path.exists():
        logger.debug("Users file %s does not exist", path)
        return []
    try:
        with path.open("r", encoding="utf-8") as fp:
            raw: Any = json.load(fp)
    except (OSError, json.JSONDecodeError) as exc:
        raise ConfigError(f"Failed to read users file {path}: {exc}") from exc
    try:
        return _UsersFile.model_validate(raw).users
    except ValidationError as exc:
        raise ConfigError(f"Invalid users file {path}: {exc}") from exc


@lru_cache(maxsize=1)
def load_device_users() -> Dict[str, DeviceUserConfig]:
    """Return the static device-token to user mapping.

    Entries come from the users JSON file, plus a single ``default`` user when
    both ``DEVICE_TOKEN`` and ``READECK_ACCESS_TOKEN`` are set.
    """

    users = _load_users_file(_users_file_path())
    device_token = (os.getenv("DEVICE_TOKEN") or "").strip()
    readeck_token = (os.getenv("READECK_ACCESS_TOKEN") or "").strip()
    if device_token and readeck_token:
        users.append(
            DeviceUserConfig(name="default", device_token=device_token, readeck_token=readeck_token)
        )

    mapping: Dict[str, DeviceUserConfig] = {}
    for user in users:
        if not user.device_token:
            raise ConfigError(f"User {user.name!r} has an empty device_token")
        if user.device_token in mapping:
            raise ConfigError(f"Device token for {user.name!r} is already assigned to {mapping[user.device_token].name!r}")
        mapping[user.device_token] = user
    return mapping


def clear_config_caches() -> None:
    for fn in (
        get_readeck_url,
        get_backend_timeout,
        get_image_timeout,
        get_image_max_bytes,
        load_device_users,
    ):
        fn.cache_clear()
