"""Configuration parsing and normalization helpers for dohrelay.

Brief:
  This module contains the configuration-parsing utilities that are used by the
  CLI entrypoint. It centralizes:
    - reading YAML config files
    - JSON Schema validation (validate_config)
    - normalization of provider entries
    - conversion into typed pydantic settings with defaults

Inputs:
  - YAML config dicts and paths

Outputs:
  - Settings instances
"""

from __future__ import annotations

import logging
import urllib.parse
from typing import Any, Dict, List, Optional, Union

import yaml
from pydantic import BaseModel, Field

from ..cache.ttl_store import DEFAULT_EVICT_BATCH, DEFAULT_MAX_ENTRIES, DEFAULT_TTL_MS
from ..providers.health import DEFAULT_RESET_INTERVAL_MS
from ..providers.registry import DEFAULT_PROVIDERS, Provider
from ..upstream.race import DEFAULT_RACE_WIDTH, DEFAULT_TIMEOUT_MS
from .config_schema import validate_config

logger = logging.getLogger("dohrelay.config")


class ListenConfig(BaseModel):
    host: str = "127.0.0.1"
    port: int = Field(default=8053, ge=1, le=65535)
    path: str = "/dns-query"


class ProviderConfig(BaseModel):
    name: str
    url: str


class RaceConfig(BaseModel):
    width: int = Field(default=DEFAULT_RACE_WIDTH, ge=1)
    timeout_ms: int = Field(default=DEFAULT_TIMEOUT_MS, ge=1)
    fallback_timeout_ms: Optional[int] = Field(default=None, ge=1)


class HealthConfig(BaseModel):
    reset_interval_ms: int = Field(default=DEFAULT_RESET_INTERVAL_MS, ge=0)


class CacheConfig(BaseModel):
    max_entries: int = Field(default=DEFAULT_MAX_ENTRIES, ge=1)
    evict_batch: int = Field(default=DEFAULT_EVICT_BATCH, ge=1)
    default_ttl_ms: int = Field(default=DEFAULT_TTL_MS, ge=0)


class Settings(BaseModel):
    """Typed, defaulted view of a validated configuration mapping."""

    listen: ListenConfig = Field(default_factory=ListenConfig)
    providers: List[ProviderConfig] = Field(
        default_factory=lambda: [
            ProviderConfig(name=p.name, url=p.url) for p in DEFAULT_PROVIDERS
        ]
    )
    race: RaceConfig = Field(default_factory=RaceConfig)
    health: HealthConfig = Field(default_factory=HealthConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    logging: Dict[str, Any] = Field(default_factory=dict)

    def provider_list(self) -> List[Provider]:
        return [Provider(p.name, p.url) for p in self.providers]


def _provider_name_from_url(url: str) -> str:
    host = urllib.parse.urlparse(url).hostname or url
    return host.lower()


def normalize_provider_config(
    raw: Optional[List[Union[str, Dict[str, Any]]]],
) -> List[Dict[str, str]]:
    """
    Brief: Normalize the ``providers`` list to ``{'name', 'url'}`` mappings.

    Inputs:
      - raw: list whose entries are either a bare URL string or a mapping
        with ``url`` and optional ``name``. None means "use defaults".

    Outputs:
      - list[dict]: one mapping per provider, in configured order. Names
        default to the URL hostname; repeated names get a numeric suffix.

    Example:
      >>> normalize_provider_config(["https://dns.google/dns-query"])
      [{'name': 'dns.google', 'url': 'https://dns.google/dns-query'}]
    """
    if raw is None:
        return [{"name": p.name, "url": p.url} for p in DEFAULT_PROVIDERS]
    if not isinstance(raw, list):
        raise ValueError("config.providers must be a list of provider definitions")

    out: List[Dict[str, str]] = []
    seen: Dict[str, int] = {}
    for entry in raw:
        if isinstance(entry, str):
            url = entry.strip()
            name = ""
        elif isinstance(entry, dict) and entry.get("url"):
            url = str(entry["url"]).strip()
            name = str(entry.get("name") or "").strip()
        else:
            raise ValueError("each provider entry must be a URL or a mapping with 'url'")

        name = name or _provider_name_from_url(url)
        if name in seen:
            seen[name] += 1
            name = f"{name}-{seen[name]}"
        else:
            seen[name] = 1
        out.append({"name": name, "url": url})

    if not out:
        raise ValueError("config.providers must list at least one provider")
    return out


def load_settings(cfg: Optional[Dict[str, Any]]) -> Settings:
    """Brief: Build Settings from a (validated) configuration mapping.

    Inputs:
      - cfg: Parsed YAML mapping; None or {} yields all defaults.

    Outputs:
      - Settings instance.

    Raises:
      - ValueError: when the mapping is structurally invalid.
    """

    data = dict(cfg or {})
    data["providers"] = normalize_provider_config(data.get("providers"))
    # YAML "section:" with no body parses as None; treat it as defaults.
    for section in ("listen", "race", "health", "cache", "logging"):
        if data.get(section) is None:
            data.pop(section, None)
    try:
        return Settings.model_validate(data)
    except Exception as exc:
        raise ValueError(f"Invalid configuration: {exc}") from exc


def parse_config_file(
    config_path: str,
    *,
    unknown_keys: str = "warn",
) -> Dict[str, Any]:
    """Brief: Read and schema-validate a YAML config file.

    Inputs:
      - config_path: Path to YAML configuration file.
      - unknown_keys: Unknown key policy passed to validate_config.

    Outputs:
      - dict: Parsed configuration mapping.

    Raises:
      - ValueError: when the YAML is not a mapping or fails validation.
    """

    with open(config_path, "r", encoding="utf-8") as f:
        cfg = yaml.safe_load(f) or {}
    if not isinstance(cfg, dict):
        raise ValueError(f"Configuration in {config_path} must be a mapping")

    validate_config(cfg, config_path=config_path, unknown_keys=unknown_keys)
    logger.debug("Parsed configuration from %s", config_path)
    return cfg
