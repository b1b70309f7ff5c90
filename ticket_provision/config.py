"""Settings for the ticket provisioning toolkit.

Values come from a YAML file (``config/settings.yaml`` unless ``--config`` or
``TICKET_PROVISION_CONFIG`` points elsewhere). Any key can be overridden with an
environment variable named ``TICKET_PROVISION_<SECTION>__<KEY>``.
"""
from __future__ import annotations

import os
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple

import yaml

from .ticket_parser import DEFAULT_HEADER_MARKER


DEFAULT_CONFIG_PATH = Path("config/settings.yaml")
DEFAULT_TEMPLATE_PATH = Path("config/settings.example.yaml")
ENV_CONFIG_PATH = "TICKET_PROVISION_CONFIG"
ENV_PREFIX = "TICKET_PROVISION_"
_TRUE_WORDS = {"1", "true", "yes", "on"}


@dataclass
class M365Config:
    """Graph app registration used for every directory call."""

    tenant_id: Optional[str] = None
    client_id: Optional[str] = None
    client_secret: Optional[str] = None
    default_usage_location: Optional[str] = None
    request_timeout: int = 30

    @property
    def has_credentials(self) -> bool:
        return bool(self.tenant_id and self.client_id and self.client_secret)


@dataclass
class ProvisioningConfig:
    """How new accounts are named, protected and paced."""

    domain: str
    initial_password: str
    force_change_password: bool = True
    alternate_suffix: str = "1"
    phone_country_code: str = "+1"
    propagation_wait_seconds: float = 30.0
    pacing_seconds: float = 2.0


@dataclass
class TicketConfig:
    header_marker: str = DEFAULT_HEADER_MARKER
    fields: Dict[str, Tuple[str, ...]] = field(default_factory=dict)


@dataclass
class StorageConfig:
    policy_file: Path = Path("config/policy.yaml")


@dataclass
class AppConfig:
    provisioning: ProvisioningConfig
    m365: M365Config = field(default_factory=M365Config)
    ticket: TicketConfig = field(default_factory=TicketConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)


class ConfigurationError(RuntimeError):
    """Raised when the settings file or its environment overrides are unusable."""


# ---------------------------------------------------------------------- #
# Locating and reading the settings file                                 #
# ---------------------------------------------------------------------- #
def _settings_path(path: Optional[Path] = None) -> Path:
    if path is not None:
        return Path(path)
    return Path(os.environ.get(ENV_CONFIG_PATH) or DEFAULT_CONFIG_PATH)


def ensure_default_config(
    path: Optional[Path] = None, template_path: Optional[Path] = None
) -> Path:
    """Create the settings file from the example template when it is missing."""

    target = _settings_path(path)
    if target.exists():
        return target

    template = Path(template_path or DEFAULT_TEMPLATE_PATH)
    if not template.exists():
        raise ConfigurationError(
            f"No settings file at '{target}' and no template at '{template}' to create it from."
        )
    target.parent.mkdir(parents=True, exist_ok=True)
    shutil.copy(template, target)
    return target


def _read_settings(path: Path) -> Dict[str, Any]:
    if not path.exists():
        raise ConfigurationError(
            f"Settings file '{path}' not found. Copy 'config/settings.example.yaml' to start."
        )
    try:
        with path.open("r", encoding="utf-8") as handle:
            loaded = yaml.safe_load(handle)
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"Settings file '{path}' is not valid YAML: {exc}") from exc
    if loaded is None:
        return {}
    if not isinstance(loaded, dict):
        raise ConfigurationError(f"Settings file '{path}' must contain a mapping.")
    return loaded


def _environment_overrides(environ: Mapping[str, str]) -> Dict[str, Any]:
    """Turn ``TICKET_PROVISION_A__B=value`` variables into ``{"a": {"b": value}}``."""

    tree: Dict[str, Any] = {}
    for name, value in environ.items():
        if not name.startswith(ENV_PREFIX) or name == ENV_CONFIG_PATH:
            continue
        *sections, leaf = name[len(ENV_PREFIX) :].lower().split("__")
        node = tree
        for section in sections:
            node = node.setdefault(section, {})
        node[leaf] = value
    return tree


def _merge(base: Dict[str, Any], overlay: Dict[str, Any]) -> Dict[str, Any]:
    merged = dict(base)
    for key, value in overlay.items():
        current = merged.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            value = _merge(current, value)
        merged[key] = value
    return merged


def _section(settings: Dict[str, Any], name: str, required: bool = False) -> Dict[str, Any]:
    if name not in settings:
        if required:
            raise ConfigurationError(f"Missing required configuration section: '{name}'.")
        return {}
    section = settings[name] or {}
    if not isinstance(section, dict):
        raise ConfigurationError(f"Configuration section '{name}' must be a mapping.")
    return section


# ---------------------------------------------------------------------- #
# Value coercion                                                         #
# ---------------------------------------------------------------------- #
def _flag(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in _TRUE_WORDS
    return bool(value)


def _text(value: Any) -> Optional[str]:
    if value is None:
        return None
    cleaned = str(value).strip()
    return cleaned or None


def _number(section: Dict[str, Any], key: str, default: float, section_name: str) -> float:
    raw = section.get(key, default)
    try:
        return float(str(raw).strip()) if isinstance(raw, str) else float(raw)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"'{section_name}.{key}' must be a number, got {raw!r}.") from exc


def _label_patterns(raw: Any) -> Dict[str, Tuple[str, ...]]:
    if not raw:
        return {}
    if not isinstance(raw, dict):
        raise ConfigurationError("'ticket.fields' must map field names to label patterns.")
    patterns: Dict[str, Tuple[str, ...]] = {}
    for name, values in raw.items():
        entries = values.split(",") if isinstance(values, str) else list(values or [])
        cleaned = tuple(text for text in (_text(entry) for entry in entries) if text)
        if cleaned:
            patterns[str(name)] = cleaned
    return patterns


# ---------------------------------------------------------------------- #
# Section builders                                                       #
# ---------------------------------------------------------------------- #
def _provisioning(section: Dict[str, Any]) -> ProvisioningConfig:
    missing = [key for key in ("domain", "initial_password") if key not in section]
    if missing:
        raise ConfigurationError(f"Missing provisioning configuration key: '{missing[0]}'.")

    domain = _text(section["domain"])
    if not domain:
        raise ConfigurationError("'provisioning.domain' must not be empty.")

    return ProvisioningConfig(
        domain=domain,
        initial_password=str(section["initial_password"]),
        force_change_password=_flag(section.get("force_change_password", True)),
        alternate_suffix=_text(section.get("alternate_suffix")) or "1",
        phone_country_code=_text(section.get("phone_country_code")) or "+1",
        propagation_wait_seconds=_number(section, "propagation_wait_seconds", 30, "provisioning"),
        pacing_seconds=_number(section, "pacing_seconds", 2, "provisioning"),
    )


def _m365(section: Dict[str, Any]) -> M365Config:
    return M365Config(
        tenant_id=_text(section.get("tenant_id")),
        client_id=_text(section.get("client_id")),
        client_secret=_text(section.get("client_secret")),
        default_usage_location=_text(section.get("default_usage_location")),
        request_timeout=int(_number(section, "request_timeout", 30, "m365")),
    )


def _ticket(section: Dict[str, Any]) -> TicketConfig:
    return TicketConfig(
        header_marker=_text(section.get("header_marker")) or DEFAULT_HEADER_MARKER,
        fields=_label_patterns(section.get("fields")),
    )


def _storage(section: Dict[str, Any]) -> StorageConfig:
    policy_file = _text(section.get("policy_file"))
    return StorageConfig(policy_file=Path(policy_file)) if policy_file else StorageConfig()


def load_config(path: Optional[Path] = None) -> AppConfig:
    """Load settings from disk, apply environment overrides and validate them."""

    settings_path = _settings_path(path)
    if settings_path == DEFAULT_CONFIG_PATH:
        ensure_default_config(settings_path)

    settings = _merge(_read_settings(settings_path), _environment_overrides(os.environ))
    return AppConfig(
        provisioning=_provisioning(_section(settings, "provisioning", required=True)),
        m365=_m365(_section(settings, "m365")),
        ticket=_ticket(_section(settings, "ticket")),
        storage=_storage(_section(settings, "storage")),
    )


__all__ = [
    "AppConfig",
    "ConfigurationError",
    "ensure_default_config",
    "load_config",
    "M365Config",
    "ProvisioningConfig",
    "StorageConfig",
    "TicketConfig",
]
