"""Organisation settings read from the registry."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Protocol

from iacscan.registry import ReadIACOrgSettingsResponse


class SettingsError(Exception):
    """The organisation settings could not be read."""


class _RegistryClient(Protocol):
    def read_iac_org_settings(self, org: str) -> ReadIACOrgSettingsResponse: ...


@dataclass
class Entitlements:
    """Entitlements of the organisation."""

    infrastructure_as_code: bool = False


@dataclass
class IgnoreSettings:
    """How ignores are handled in the organisation."""

    admin_only: bool = False
    disregard_filesystem_ignores: bool = False
    reason_required: bool = False


@dataclass
class Settings:
    """The settings that apply to a scan."""

    org: str = ""
    org_public_id: str = ""
    custom_severities: dict[str, str] = field(default_factory=dict)
    entitlements: Entitlements = field(default_factory=Entitlements)
    ignore_settings: IgnoreSettings = field(default_factory=IgnoreSettings)


class Reader:
    """Reads the settings of one organisation from the registry."""

    def __init__(self, registry_client: _RegistryClient, org: str):
        self.registry_client = registry_client
        self.org = org

    def read_settings(self) -> Settings:
        try:
            response = self.registry_client.read_iac_org_settings(self.org)
        except Exception as err:
            raise SettingsError(f"read IaC org settings: {err}") from err

        entitlements = response.entitlements or {}
        ignore = response.meta.ignore_settings
        return Settings(
            org=response.meta.org,
            org_public_id=response.meta.org_public_id,
            custom_severities={rule: policy.severity for rule, policy in response.custom_policies.items()},
            entitlements=Entitlements(infrastructure_as_code=bool(entitlements.get("infrastructureAsCode", False))),
            ignore_settings=IgnoreSettings(
                admin_only=ignore.admin_only,
                disregard_filesystem_ignores=ignore.disregard_filesystem_ignores,
                reason_required=ignore.reason_required,
            ),
        )


class CachedReader:
    """Reads settings once and returns the same outcome on every later call."""

    def __init__(self, reader: Reader):
        self.reader = reader
        self._lock = threading.Lock()
        self._done = False
        self._settings: Settings | None = None
        self._error: SettingsError | None = None

    def read_settings(self) -> Settings:
        with self._lock:
            if not self._done:
                try:
                    self._settings = self.reader.read_settings()
                except SettingsError as err:
                    self._error = err
                self._done = True
        if self._error is not None:
            raise self._error
        assert self._settings is not None
        return self._settings