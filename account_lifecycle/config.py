"""Configuration loading utilities for the account lifecycle toolkit."""
from __future__ import annotations

import os
import shutil
import uuid
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, Iterable, Optional, Tuple

import yaml


DEFAULT_CONFIG_PATH = Path("config/settings.yaml")
DEFAULT_TEMPLATE_PATH = Path("config/settings.example.yaml")
ENV_CONFIG_PATH = "ACCOUNT_LIFECYCLE_CONFIG"
ENV_PREFIX = "ACCOUNT_LIFECYCLE_"

# Public client registered by Microsoft for the Graph command-line tools.
DEFAULT_CLIENT_ID = "14d82eec-204b-4c2f-b7e8-296a70dab67e"
DEFAULT_SCOPES: Tuple[str, ...] = ("User.ReadWrite.All", "Organization.Read.All")

PLACEHOLDER_MARKERS: Tuple[str, ...] = (
    "your-",
    "your_",
    "yourdomain",
    "changeme",
    "placeholder",
    "example.com",
    "00000000-0000-0000-0000-000000000000",
)


class ConfigurationError(RuntimeError):
    """Raised when the configuration file or environment variables are invalid."""


def _is_placeholder(value: str) -> bool:
    lowered = value.strip().lower()
    if lowered.startswith("<") and lowered.endswith(">"):
        return True
    return any(marker in lowered for marker in PLACEHOLDER_MARKERS)


@dataclass(frozen=True)
class TenantConfig:
    """Tenant identity and the licence SKUs every new account should receive."""

    tenant_id: str
    domain: str
    required_license_skus: Tuple[str, ...] = ()
    usage_location: Optional[str] = None

    def validate(self) -> "TenantConfig":
        """Raise :class:`ConfigurationError` unless the record is usable."""

        for label, value in (("tenant.tenant_id", self.tenant_id), ("tenant.domain", self.domain)):
            if not value or not value.strip():
                raise ConfigurationError(f"'{label}' is not configured.")
            if _is_placeholder(value):
                raise ConfigurationError(
                    f"'{label}' still holds a placeholder value ({value!r}). "
                    "Run `account-lifecycle configure` to set it."
                )
        try:
            uuid.UUID(self.tenant_id.strip())
        except ValueError as exc:
            raise ConfigurationError(
                f"'tenant.tenant_id' must be a GUID, got {self.tenant_id!r}."
            ) from exc

        if not self.required_license_skus:
            raise ConfigurationError("No licence SKUs are configured under 'licensing'.")
        if len(self.required_license_skus) < 2:
            raise ConfigurationError(
                "Both 'licensing.base_sku' and 'licensing.addon_sku' must be configured."
            )
        for sku in self.required_license_skus:
            if not sku or _is_placeholder(sku):
                raise ConfigurationError(
                    f"Licence SKU {sku!r} is empty or a placeholder; set 'licensing' values."
                )
        return self


@dataclass
class GraphConfig:
    """Settings for the Microsoft Graph sign-in."""

    client_id: str = DEFAULT_CLIENT_ID
    client_secret: Optional[str] = None
    scopes: Tuple[str, ...] = DEFAULT_SCOPES

    @property
    def app_only(self) -> bool:
        return bool(self.client_secret)


@dataclass
class LoggingConfig:
    """Where session logs are written."""

    directory: Path = field(default_factory=lambda: Path("logs"))
    level: str = "INFO"


@dataclass
class AppConfig:
    """Aggregate configuration for the application."""

    tenant: TenantConfig
    graph: GraphConfig = field(default_factory=GraphConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def _load_from_file(path: Path) -> Dict[str, Any]:
    if not path.exists():
        raise ConfigurationError(
            f"Configuration file '{path}' does not exist. "
            "Create it from 'config/settings.example.yaml' or run `account-lifecycle configure`."
        )
    with path.open("r", encoding="utf-8") as file:
        try:
            return yaml.safe_load(file) or {}
        except yaml.YAMLError as exc:
            raise ConfigurationError(f"Configuration file '{path}' is not valid YAML: {exc}") from exc


def _apply_environment_overrides(config_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Override configuration values with environment variables."""

    overrides: Dict[str, Any] = {}
    for key, value in os.environ.items():
        if not key.startswith(ENV_PREFIX) or key == ENV_CONFIG_PATH:
            continue
        path = key[len(ENV_PREFIX) :].lower().split("__")
        node = overrides
        for part in path[:-1]:
            node = node.setdefault(part, {})
        node[path[-1]] = value

    if overrides:
        config_dict = _deep_merge(config_dict, overrides)
    return config_dict


def _deep_merge(base: Dict[str, Any], overrides: Dict[str, Any]) -> Dict[str, Any]:
    result = dict(base)
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            result[key] = _deep_merge(base[key], value)
        else:
            result[key] = value
    return result


def _resolve_config_path(path: Optional[Path] = None) -> Path:
    if path is not None:
        return Path(path)
    env_path = os.environ.get(ENV_CONFIG_PATH)
    if env_path:
        return Path(env_path)
    return DEFAULT_CONFIG_PATH


def ensure_default_config(
    path: Optional[Path] = None, template_path: Optional[Path] = None
) -> Path:
    """Ensure a configuration file exists, copying from the example if needed."""

    target_path = _resolve_config_path(path)
    if target_path.exists():
        return target_path

    template = Path(template_path) if template_path is not None else DEFAULT_TEMPLATE_PATH
    if not template.exists():
        raise ConfigurationError(
            "Default configuration template not found. "
            "Ensure 'config/settings.example.yaml' is present or specify a template."
        )

    target_path.parent.mkdir(parents=True, exist_ok=True)
    shutil.copy(template, target_path)
    return target_path


def _load_config_dict(path: Optional[Path] = None) -> Dict[str, Any]:
    resolved_path = _resolve_config_path(path)
    if resolved_path == DEFAULT_CONFIG_PATH:
        ensure_default_config(resolved_path)

    config_dict = _load_from_file(resolved_path)
    return _apply_environment_overrides(config_dict)


def _get_section(config_dict: Dict[str, Any], key: str) -> Dict[str, Any]:
    section = config_dict.get(key)
    if section is None:
        raise ConfigurationError(f"Missing required configuration section: '{key}'.")
    if not isinstance(section, dict):
        raise ConfigurationError(f"Configuration section '{key}' must be a mapping.")
    return section


def _normalize_sequence(value: Any) -> Iterable[Any]:
    if value is None:
        return []
    if isinstance(value, (list, tuple, set)):
        return value
    if isinstance(value, str):
        return value.split(",")
    return [value]


def _optional_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, str):
        stripped = value.strip()
        return stripped or None
    return str(value)


def _required_str(section: Dict[str, Any], key: str) -> str:
    return _optional_str(section.get(key)) or ""


def load_config(path: Optional[Path] = None) -> AppConfig:
    """Load application configuration from disk and environment variables.

    Only parsing happens here; call ``config.tenant.validate()`` before
    talking to the directory.
    """

    config_dict = _load_config_dict(path)
    tenant_section = _get_section(config_dict, "tenant")
    licensing_section = _get_section(config_dict, "licensing")
    graph_section = config_dict.get("graph") or {}
    logging_section = config_dict.get("logging") or {}

    skus = tuple(
        sku
        for sku in (
            _optional_str(licensing_section.get("base_sku")),
            _optional_str(licensing_section.get("addon_sku")),
        )
        if sku
    )
    usage_location = _optional_str(graph_section.get("usage_location"))
    tenant_config = TenantConfig(
        tenant_id=_required_str(tenant_section, "tenant_id"),
        domain=_required_str(tenant_section, "domain"),
        required_license_skus=skus,
        usage_location=usage_location.upper() if usage_location else None,
    )

    scopes = tuple(
        filter(None, [str(entry).strip() for entry in _normalize_sequence(graph_section.get("scopes"))])
    ) or DEFAULT_SCOPES
    graph_config = GraphConfig(
        client_id=_optional_str(graph_section.get("client_id")) or DEFAULT_CLIENT_ID,
        client_secret=_optional_str(graph_section.get("client_secret")),
        scopes=scopes,
    )

    default_logging = LoggingConfig()
    logging_config = LoggingConfig(
        directory=Path(_optional_str(logging_section.get("directory")) or default_logging.directory),
        level=(_optional_str(logging_section.get("level")) or default_logging.level).upper(),
    )

    return AppConfig(tenant=tenant_config, graph=graph_config, logging=logging_config)


def config_to_dict(config: AppConfig) -> Dict[str, Any]:
    """Serialize an :class:`AppConfig` back to primitive types for persistence."""

    skus = list(config.tenant.required_license_skus)
    return {
        "tenant": {
            "tenant_id": config.tenant.tenant_id,
            "domain": config.tenant.domain,
        },
        "licensing": {
            "base_sku": skus[0] if skus else "",
            "addon_sku": skus[1] if len(skus) > 1 else "",
        },
        "graph": {
            "client_id": config.graph.client_id,
            "client_secret": config.graph.client_secret or "",
            "scopes": list(config.graph.scopes),
            "usage_location": config.tenant.usage_location or "",
        },
        "logging": {
            "directory": str(config.logging.directory),
            "level": config.logging.level,
        },
    }


def save_config(config: AppConfig, path: Optional[Path] = None) -> Path:
    """Persist the configuration to disk, returning the path that was written."""

    target = _resolve_config_path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    payload = config_to_dict(config)
    with target.open("w", encoding="utf-8") as handle:
        yaml.safe_dump(payload, handle, sort_keys=False, indent=2)
    return target


def update_config(
    path: Optional[Path] = None,
    *,
    tenant_id: Optional[str] = None,
    domain: Optional[str] = None,
    base_sku: Optional[str] = None,
    addon_sku: Optional[str] = None,
    usage_location: Optional[str] = None,
    client_id: Optional[str] = None,
) -> AppConfig:
    """Apply the supplied changes to the stored record and write it back."""

    try:
        config = load_config(path)
    except ConfigurationError:
        config = AppConfig(tenant=TenantConfig(tenant_id="", domain=""))

    skus = list(config.tenant.required_license_skus) + ["", ""]
    if base_sku is not None:
        skus[0] = base_sku.strip()
    if addon_sku is not None:
        skus[1] = addon_sku.strip()

    tenant = replace(
        config.tenant,
        tenant_id=tenant_id.strip() if tenant_id is not None else config.tenant.tenant_id,
        domain=domain.strip() if domain is not None else config.tenant.domain,
        required_license_skus=tuple(sku for sku in skus[:2] if sku),
        usage_location=(usage_location.strip().upper() or None)
        if usage_location is not None
        else config.tenant.usage_location,
    )
    config.tenant = tenant
    if client_id is not None:
        config.graph.client_id = client_id.strip() or DEFAULT_CLIENT_ID

    save_config(config, path)
    return config


__all__ = [
    "AppConfig",
    "ConfigurationError",
    "DEFAULT_CLIENT_ID",
    "DEFAULT_SCOPES",
    "GraphConfig",
    "LoggingConfig",
    "TenantConfig",
    "config_to_dict",
    "ensure_default_config",
    "load_config",
    "save_config",
    "update_config",
]
