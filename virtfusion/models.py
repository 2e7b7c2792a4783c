"""Host platform records consumed by the lifecycle adapter."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Mapping, Optional, Protocol

DEFAULT_ALLOWED_IPS = 1
DEFAULT_STORAGE_GB = 20
DEFAULT_MEMORY_MB = 1024
DEFAULT_CPU_CORES = 5


@dataclass(frozen=True)
class HostUser:
    """A customer account owned by the host platform."""

    id: int
    first_name: str
    last_name: str
    email: str

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"


@dataclass(frozen=True)
class Package:
    """A product offering together with its admin-declared settings."""

    id: int
    name: str
    config: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Order:
    """An order for a package, with the remote server recorded against it."""

    id: int
    user: HostUser
    package: Package
    external_id: Optional[str] = None
    data: Optional[Dict[str, Any]] = None


@dataclass(frozen=True)
class ExternalUser:
    """Linkage between a host user and their panel account."""

    user_id: int
    external_id: str
    username: str
    password: Optional[str]
    data: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class RemoteServer:
    """A virtual server created on the panel for an order."""

    external_id: str
    data: Dict[str, Any]


@dataclass(frozen=True)
class QueuedEmail:
    """An email waiting in the host platform's outbox."""

    id: int
    user_id: int
    subject: str
    content: str
    button_name: Optional[str]
    button_url: Optional[str]
    created_at: datetime
    sent_at: Optional[datetime] = None


def _int_setting(config: Mapping[str, Any], key: str, default: Optional[int]) -> Optional[int]:
    value = config.get(key)
    if value is None or (isinstance(value, str) and not value.strip()):
        return default
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Package setting '{key}' must be numeric, got {value!r}") from exc


@dataclass(frozen=True)
class PackageConfig:
    """Typed view of the per-package panel settings."""

    package_id: Optional[int]
    hypervisor_group_id: Optional[int]
    allowed_ips: int = DEFAULT_ALLOWED_IPS
    storage: int = DEFAULT_STORAGE_GB
    memory: int = DEFAULT_MEMORY_MB
    cpu_cores: int = DEFAULT_CPU_CORES

    @staticmethod
    def from_mapping(config: Mapping[str, Any]) -> "PackageConfig":
        """Read the raw package settings, applying defaults to omitted limits."""
        return PackageConfig(
            package_id=_int_setting(config, "package", None),
            hypervisor_group_id=_int_setting(config, "hypervisor_group_id", None),
            allowed_ips=_int_setting(config, "allowed_ips", DEFAULT_ALLOWED_IPS),
            storage=_int_setting(config, "storage", DEFAULT_STORAGE_GB),
            memory=_int_setting(config, "memory", DEFAULT_MEMORY_MB),
            cpu_cores=_int_setting(config, "cpu_cores", DEFAULT_CPU_CORES),
        )


class OrderRepository(Protocol):
    """Persistence operations the host platform exposes to the adapter."""

    def get_external_user(self, user_id: int) -> Optional[ExternalUser]:
        ...

    def create_external_user(
        self,
        order: Order,
        *,
        external_id: str,
        username: str,
        password: Optional[str],
        data: Mapping[str, Any],
    ) -> ExternalUser:
        ...

    def update_order_external(self, order_id: int, *, external_id: str, data: Mapping[str, Any]) -> None:
        ...


__all__ = [
    "DEFAULT_ALLOWED_IPS",
    "DEFAULT_CPU_CORES",
    "DEFAULT_MEMORY_MB",
    "DEFAULT_STORAGE_GB",
    "ExternalUser",
    "HostUser",
    "Order",
    "OrderRepository",
    "Package",
    "PackageConfig",
    "QueuedEmail",
    "RemoteServer",
]
