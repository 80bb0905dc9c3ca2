"""
Centralized settings using Pydantic Settings (v2).
Credentials come from environment variables (or .env), never from code.

The destination table (which account lives behind which route) is built ONCE at
startup by load_destinations() and handed to the app; handlers never read env
vars at call time.
"""

import os
from pathlib import Path
from typing import Any, Dict, List, Literal

import yaml
from pydantic import BaseModel, Field, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from relay.exceptions import ConfigError


class Settings(BaseSettings):
    # ---- GHL sub-accounts ----
    ACCOUNT_A_API: str | None = None
    ACCOUNT_B_API: str | None = None
    ACCOUNT_C_API: str | None = None
    ACCOUNT_D_API: str | None = None
    ACCOUNT_D_LOCATION_ID: str | None = None

    # ---- HubSpot private app tokens ----
    HUBSPOT_ACCESS_TOKEN: str | None = None
    HUBSPOT_B_ACCESS_TOKEN: str | None = None

    # ---- Inbound auth ----
    WEBHOOK_SECRET: str | None = Field(
        default=None,
        description="Shared secret; when unset, inbound webhooks are not checked",
    )

    # ---- Destinations / request logs ----
    DESTINATIONS_PATH: str = Field(default="config/destinations.yaml")
    LOG_DIR: str = Field(default="logs")

    # ---- Outbound calls ----
    GHL_TIMEOUT_S: float = 15.0
    HUBSPOT_TIMEOUT_S: float = 20.0

    # ---- Observability ----
    SERVICE_NAME: str = Field(default="ghl-webhook-relay")
    LOG_LEVEL: str = Field(default="INFO")
    OTEL_EXPORTER_OTLP_ENDPOINT: str | None = None

    # ---- PII Redaction (console logs only; request log files keep raw payloads) ----
    PII_REDACTION_ENABLED: bool = Field(default=True)

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


settings = Settings()


GHL_LEGACY_URL = "https://rest.gohighlevel.com/v1"
GHL_V2_URL = "https://services.leadconnectorhq.com"
GHL_V2_VERSION = "2021-07-28"
HUBSPOT_URL = "https://api.hubapi.com"

# logical marketing field -> HubSpot property name
DEFAULT_HUBSPOT_PROPERTIES = {
    "email": "email",
    "firstname": "firstname",
    "lastname": "lastname",
    "phone": "phone",
    "source": "source",
}


class DestinationProfile(BaseModel):
    """One outbound account: where it lives, how to authenticate, how to map fields."""

    model_config = {"frozen": True}

    name: str
    label: str
    path: str
    kind: Literal["ghl", "hubspot"]
    token_env: str
    token: str | None = None
    base_url: str
    api_version: str | None = None
    location_id: str | None = None
    default_tags: List[str] = Field(default_factory=list)
    tag_field_pattern: str | None = None
    email_fallback: bool = False
    include_tags: bool = False
    properties: Dict[str, str] = Field(default_factory=lambda: dict(DEFAULT_HUBSPOT_PROPERTIES))
    custom_properties: Dict[str, str] = Field(default_factory=dict)
    log_file: str
    timeout_s: float = 15.0

    @property
    def configured(self) -> bool:
        return bool(self.token)


def _default_table(s: Settings) -> List[Dict[str, Any]]:
    """Built-in routes, used when no YAML destination table is present."""
    ghl = [
        ("account_a", "Account A", "/webhook", "ACCOUNT_A_API"),
        ("account_b", "Account B", "/webhook2", "ACCOUNT_B_API"),
        ("account_c", "Account C", "/webhook3", "ACCOUNT_C_API"),
    ]
    rows: List[Dict[str, Any]] = [
        {
            "name": name,
            "label": label,
            "path": path,
            "kind": "ghl",
            "token_env": env,
            "base_url": GHL_LEGACY_URL,
            "default_tags": [f"From {label}"],
            "log_file": f"{name}-log.jsonl",
            "timeout_s": s.GHL_TIMEOUT_S,
        }
        for name, label, path, env in ghl
    ]
    rows.append(
        {
            "name": "account_d",
            "label": "Account D",
            "path": "/webhook4",
            "kind": "ghl",
            "token_env": "ACCOUNT_D_API",
            "base_url": GHL_V2_URL,
            "api_version": GHL_V2_VERSION,
            "location_id": s.ACCOUNT_D_LOCATION_ID,
            "default_tags": ["From Account D"],
            "tag_field_pattern": r"(?i)coaching.*complet",
            "log_file": "account_d-log.jsonl",
            "timeout_s": s.GHL_TIMEOUT_S,
        }
    )
    rows.append(
        {
            "name": "hubspot",
            "label": "HubSpot",
            "path": "/webhook/ghl-to-hubspot",
            "kind": "hubspot",
            "token_env": "HUBSPOT_ACCESS_TOKEN",
            "base_url": HUBSPOT_URL,
            "custom_properties": {"my_custom_field": "my_custom_field"},
            "log_file": "hubspot-log.jsonl",
            "timeout_s": s.HUBSPOT_TIMEOUT_S,
        }
    )
    rows.append(
        {
            "name": "hubspot_b",
            "label": "HubSpot B",
            "path": "/webhook/ghl-to-hubspot-b",
            "kind": "hubspot",
            "token_env": "HUBSPOT_B_ACCESS_TOKEN",
            "base_url": HUBSPOT_URL,
            "email_fallback": True,
            "custom_properties": {"my_custom_field": "My_Custom_Field"},
            "log_file": "hubspot_b-log.jsonl",
            "timeout_s": s.HUBSPOT_TIMEOUT_S,
        }
    )
    return rows


def _load_table_file(path: str) -> List[Dict[str, Any]] | None:
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except FileNotFoundError:
        return None
    except yaml.YAMLError as e:
        raise ConfigError(f"Destination table {path} is not valid YAML: {e}") from e
    rows = data.get("destinations") if isinstance(data, dict) else None
    if not isinstance(rows, list):
        raise ConfigError(f"Destination table {path} must contain a 'destinations' list")
    return rows


def _resolve_token(s: Settings, env_name: str) -> str | None:
    # Declared settings win (they also see .env); anything else falls back to the process env
    value = getattr(s, env_name, None) if env_name in Settings.model_fields else None
    return value or os.getenv(env_name) or None


def load_destinations(s: Settings | None = None) -> List[DestinationProfile]:
    """
    Build the destination profiles once.
    - Reads DESTINATIONS_PATH if it exists, else uses the built-in table.
    - Resolves each profile's credential from the setting/env var named in token_env.
    - Fails fast (ConfigError) on a malformed table or duplicate routes.
    """
    s = s or settings
    rows = _load_table_file(s.DESTINATIONS_PATH)
    if rows is None:
        rows = _default_table(s)

    profiles: List[DestinationProfile] = []
    seen_paths = set()
    for row in rows:
        if not isinstance(row, dict):
            raise ConfigError(f"Destination entry must be a mapping, got {type(row).__name__}")
        row = dict(row)
        row.setdefault("log_file", f"{row.get('name', 'destination')}-log.jsonl")
        row.setdefault("timeout_s", s.HUBSPOT_TIMEOUT_S if row.get("kind") == "hubspot" else s.GHL_TIMEOUT_S)
        if row.get("kind") == "ghl":
            row.setdefault("base_url", GHL_LEGACY_URL)
        elif row.get("kind") == "hubspot":
            row.setdefault("base_url", HUBSPOT_URL)
        row["token"] = _resolve_token(s, str(row.get("token_env") or ""))
        location_env = row.pop("location_env", None)
        if location_env:
            row["location_id"] = _resolve_token(s, str(location_env))
        try:
            profile = DestinationProfile(**row)
        except ValidationError as e:
            raise ConfigError(f"Invalid destination {row.get('name')!r}: {e}") from e
        if profile.path in seen_paths:
            raise ConfigError(f"Duplicate destination path {profile.path}")
        seen_paths.add(profile.path)
        profiles.append(profile)
    return profiles


def log_path(s: Settings, profile: DestinationProfile) -> Path:
    return Path(s.LOG_DIR) / profile.log_file
