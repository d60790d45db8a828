"""Device authentication."""

from .devices import DeviceRegistry, DeviceUser, authenticate_device, get_device_registry

__all__ = [
    "DeviceRegistry",
    "DeviceUser",
    "authenticate_device",
    "get_device_registry",
]
