from __future__ import annotations

import pytest
from fastapi import HTTPException

from instadeck.auth import DeviceRegistry, DeviceUser, authenticate_device, get_device_registry
from instadeck.config import DeviceUserConfig


REGISTRY = DeviceRegistry(
    [
        DeviceUser(name="alice", device_token="tok-a", readeck_token="rd-a"),
        DeviceUser(name="bob", device_token="tok-b", readeck_token="rd-b"),
    ]
)


def test_authenticate_device_resolves_credential():
    user = authenticate_device("tok-b", REGISTRY)

    assert user.name == "bob"
    assert user.readeck_token == "rd-b"


@pytest.mark.parametrize("token", [None, "", "tok-c", 12])
def test_authenticate_device_rejects_unknown_tokens(token):
    with pytest.raises(HTTPException) as excinfo:
        authenticate_device(token, REGISTRY)

    assert excinfo.value.status_code == 401


def test_registry_from_config_and_repr_hides_tokens():
    registry = DeviceRegistry.from_config(
        {"tok-z": DeviceUserConfig(name="zed", device_token="tok-z", readeck_token="secret")}
    )

    assert len(registry) == 1
    assert registry.names == ["zed"]
    assert "secret" not in repr(registry.lookup("tok-z"))


def test_get_device_registry_reads_environment(monkeypatch, tmp_path):
    from instadeck.config import clear_config_caches

    monkeypatch.setenv("INSTADECK_CONFIG_DIR", str(tmp_path))
    monkeypatch.delenv("INSTADECK_USERS_FILE", raising=False)
    monkeypatch.setenv("DEVICE_TOKEN", "tok-env")
    monkeypatch.setenv("READECK_ACCESS_TOKEN", "rd-env")
    clear_config_caches()
    try:
        registry = get_device_registry()
    finally:
        clear_config_caches()

    assert registry.lookup("tok-env").readeck_token == "rd-env"
