import os
from dataclasses import dataclass, field
from typing import Optional

from dotenv import load_dotenv


def _env(name: str) -> Optional[str]:
    """Read an environment variable, treating blank values as unset."""
    value = os.getenv(name)
    if value is None or not value.strip():
        return None
    return value.strip()


def _env_float(name: str, default: float) -> float:
    value = _env(name)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        return default


def _env_bool(name: str, default: bool) -> bool:
    value = _env(name)
    if value is None:
        return default
    return value.lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class TargetConfig:
    """Credentials and transport settings for the Target Delivery API."""
    client_code: Optional[str] = None
    org_id: Optional[str] = None
    property_token: Optional[str] = None
    timeout: float = 5.0  # seconds, applies to the whole delivery call

    # Session cookie lifetimes (seconds)
    session_max_age: int = 1860
    pc_max_age: int = 63_244_800

    @property
    def enabled(self) -> bool:
        return bool(self.client_code and self.org_id)


@dataclass(frozen=True)
class IdentityConfig:
    """ECID minting through the demdex identity service."""
    endpoint: str = "https://dpm.demdex.net/id"
    visitor_version: str = "5.0.0"
    timeout: float = 3.0
    cookie_max_age: int = 2 * 365 * 24 * 60 * 60


@dataclass(frozen=True)
class AnalyticsConfig:
    """Data Insertion settings for A4T display hits."""
    tracking_server: Optional[str] = None
    rsid: Optional[str] = None
    beacon_timeout: float = 3.0
    display_event: str = "event8"

    @property
    def enabled(self) -> bool:
        return bool(self.tracking_server and self.rsid)


@dataclass(frozen=True)
class StorefrontConfig:
    """Master configuration for the storefront service."""
    host: str = "0.0.0.0"
    port: int = 3000

    # Append at_* attribution params to redirect offers so the landing
    # page can rebuild slot analytics from the URL alone.
    forward_attribution: bool = True

    target: TargetConfig = field(default_factory=TargetConfig)
    identity: IdentityConfig = field(default_factory=IdentityConfig)
    analytics: AnalyticsConfig = field(default_factory=AnalyticsConfig)

    @property
    def org_id(self) -> Optional[str]:
        return self.target.org_id


def load_config(dotenv_path: Optional[str] = None) -> StorefrontConfig:
    """
    Build the service configuration from the environment.

    A ``.env`` file is loaded first (without overriding variables that are
    already set). Missing Target credentials put the service in demo mode;
    missing Analytics settings only disable beacon sending.
    """
    load_dotenv(dotenv_path)

    target = TargetConfig(
        client_code=_env("ADOBE_TARGET_CLIENT"),
        org_id=_env("ADOBE_TARGET_ORG_ID"),
        property_token=_env("ADOBE_TARGET_PROPERTY_TOKEN"),
        timeout=_env_float("ADOBE_TARGET_TIMEOUT", 5.0),
    )
    identity = IdentityConfig(timeout=_env_float("ADOBE_ECID_TIMEOUT", 3.0))
    analytics = AnalyticsConfig(
        tracking_server=_env("ADOBE_ANALYTICS_TRACKING_SERVER"),
        rsid=_env("ADOBE_ANALYTICS_RSID"),
        beacon_timeout=_env_float("ADOBE_BEACON_TIMEOUT", 3.0),
    )
    return StorefrontConfig(
        host=_env("HOST") or "0.0.0.0",
        port=int(_env_float("PORT", 3000)),
        forward_attribution=_env_bool("STOREFRONT_FORWARD_ATTRIBUTION", True),
        target=target,
        identity=identity,
        analytics=analytics,
    )
