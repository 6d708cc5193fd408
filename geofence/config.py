"""Configuration for the geoblocking middleware."""

from __future__ import annotations

from dataclasses import dataclass, field
from http import HTTPStatus


@dataclass
class Config:
    """Settings for the geoblocking middleware.

    A bare ``Config()`` holds empty values for every setting; use
    :func:`create_config` for the usual defaults.
    """

    # Core settings
    enabled: bool = False
    database_file_path: str = ""
    default_allow: bool = False
    allow_private: bool = False
    ban_if_error: bool = False

    # Country rules (ISO 3166-1 alpha-2 codes)
    allowed_countries: list[str] = field(default_factory=list)
    blocked_countries: list[str] = field(default_factory=list)

    # CIDR rules
    allowed_ip_blocks: list[str] = field(default_factory=list)
    blocked_ip_blocks: list[str] = field(default_factory=list)

    # Response settings
    disallowed_status_code: int = 0
    ban_html_file_path: str = ""

    # Logging
    log_level: str = ""
    log_format: str = ""
    log_path: str = ""
    log_banned_requests: bool = False

    # Header name to value; a matching request skips the geoblock check.
    bypass_headers: dict[str, str] = field(default_factory=dict)

    # Database auto-update
    database_auto_update: bool = False
    database_auto_update_dir: str = ""
    database_auto_update_token: str = ""
    database_auto_update_code: str = ""


def create_config() -> Config:
    """Return a configuration populated with the default settings."""
    return Config(
        disallowed_status_code=int(HTTPStatus.FORBIDDEN),
        log_level="info",
        log_format="text",
        log_path="",
        ban_if_error=True,
        bypass_headers={},
        database_auto_update_code="DB1",
        log_banned_requests=True,
    )