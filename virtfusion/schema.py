"""Field descriptors rendered by the host platform's admin forms."""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from .config import API_KEY_SETTING, HOST_SETTING, TRAILING_SLASH_MESSAGE, host_url_errors
from .models import DEFAULT_CPU_CORES, DEFAULT_MEMORY_MB, DEFAULT_STORAGE_GB


class FieldType(str, Enum):
    TEXT = "text"
    URL = "url"
    PASSWORD = "password"
    NUMBER = "number"
    SELECT = "select"


class Rule(str, Enum):
    """Validation rules understood by :func:`validate_fields`."""

    REQUIRED = "required"
    NUMERIC = "numeric"
    URL = "url"
    NO_TRAILING_SLASH = "no_trailing_slash"


@dataclass(frozen=True)
class FieldDescriptor:
    """A single input shown on an admin configuration form."""

    key: str
    name: str
    description: str
    type: FieldType
    rules: Tuple[Rule, ...] = ()
    default_value: Any = None
    options: Optional[Dict[Any, str]] = None
    col: Optional[str] = None
    save_on_change: bool = False

    def to_dict(self) -> Dict[str, object]:
        payload: Dict[str, object] = {
            "key": self.key,
            "name": self.name,
            "description": self.description,
            "type": self.type.value,
            "rules": [rule.value for rule in self.rules],
        }
        if self.default_value is not None:
            payload["default_value"] = self.default_value
        if self.options is not None:
            payload["options"] = dict(self.options)
        if self.col is not None:
            payload["col"] = self.col
        if self.save_on_change:
            payload["save_on_change"] = True
        return payload


def _is_blank(value: object) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _is_numeric(value: object) -> bool:
    if isinstance(value, bool):
        return False
    if isinstance(value, (int, float)):
        return True
    try:
        float(str(value).strip())
    except ValueError:
        return False
    return True


def _check_rule(descriptor: FieldDescriptor, rule: Rule, value: object) -> Optional[str]:
    if rule is Rule.REQUIRED:
        return f"The {descriptor.name} field is required." if _is_blank(value) else None
    if _is_blank(value):
        return None
    if rule is Rule.NUMERIC:
        return None if _is_numeric(value) else f"The {descriptor.name} field must be a number."
    if rule is Rule.URL:
        problems = [problem for problem in host_url_errors(str(value)) if problem != TRAILING_SLASH_MESSAGE]
        return f"The {descriptor.name} field must be a valid URL." if problems else None
    if rule is Rule.NO_TRAILING_SLASH:
        return TRAILING_SLASH_MESSAGE if str(value).strip().endswith("/") else None
    raise ValueError(f"Unknown validation rule {rule!r}")


def validate_fields(
    fields: Iterable[FieldDescriptor],
    values: Mapping[str, object],
) -> Dict[str, List[str]]:
    """Return validation messages keyed by field; empty when everything passes."""

    errors: Dict[str, List[str]] = {}
    for descriptor in fields:
        value = values.get(descriptor.key)
        for rule in descriptor.rules:
            message = _check_rule(descriptor, rule, value)
            if message:
                errors.setdefault(descriptor.key, []).append(message)
    return errors


def config_schema() -> List[FieldDescriptor]:
    """Installation-wide settings: the panel URL and its API key."""

    return [
        FieldDescriptor(
            key=HOST_SETTING,
            name="Host",
            description="The host / url of the VirtFusion Panel i.e https://panel.example.com",
            type=FieldType.URL,
            rules=(Rule.REQUIRED, Rule.URL, Rule.NO_TRAILING_SLASH),
        ),
        FieldDescriptor(
            key=API_KEY_SETTING,
            name="API Key",
            description="The API Key of the VirtFusion Panel",
            type=FieldType.PASSWORD,
            rules=(Rule.REQUIRED,),
        ),
    ]


def package_config_schema(packages: Mapping[Any, str]) -> List[FieldDescriptor]:
    """Per-package settings; ``packages`` populates the remote package selector."""

    return [
        FieldDescriptor(
            key="package",
            name="Package",
            description="Select the package to use for this service",
            type=FieldType.SELECT,
            rules=(Rule.REQUIRED,),
            options=dict(packages),
            col="col-12",
            save_on_change=True,
        ),
        FieldDescriptor(
            key="hypervisor_group_id",
            name="Hypervisor Group ID",
            description="Enter the Hypervisor Group ID to use for this service",
            type=FieldType.NUMBER,
            rules=(Rule.REQUIRED, Rule.NUMERIC),
            col="col-12",
            save_on_change=True,
        ),
        FieldDescriptor(
            key="allowed_ips",
            name="Number of Allowed ipv4 IPs",
            description="Enter the number of allowed ipv4 IPs for this service",
            type=FieldType.NUMBER,
            rules=(Rule.REQUIRED, Rule.NUMERIC),
        ),
        FieldDescriptor(
            key="storage",
            name="Storage Limit (GB)",
            description="Enter the storage limit for this service in GB",
            type=FieldType.NUMBER,
            rules=(Rule.REQUIRED, Rule.NUMERIC),
            default_value=DEFAULT_STORAGE_GB,
        ),
        FieldDescriptor(
            key="memory",
            name="Memory Limit (MB)",
            description="Enter the memory limit for this service in MB",
            type=FieldType.NUMBER,
            rules=(Rule.REQUIRED, Rule.NUMERIC),
            default_value=DEFAULT_MEMORY_MB,
        ),
        FieldDescriptor(
            key="cpu_cores",
            name="CPU Cores",
            description="Enter the number of CPU Cores for this service",
            type=FieldType.NUMBER,
            rules=(Rule.REQUIRED, Rule.NUMERIC),
            default_value=DEFAULT_CPU_CORES,
        ),
    ]


def serialize_fields(fields: Sequence[FieldDescriptor]) -> List[Dict[str, object]]:
    return [descriptor.to_dict() for descriptor in fields]


__all__ = [
    "FieldDescriptor",
    "FieldType",
    "Rule",
    "config_schema",
    "package_config_schema",
    "serialize_fields",
    "validate_fields",
]
