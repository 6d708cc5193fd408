"""WSGI middleware that blocks requests by client country or IP block."""

from __future__ import annotations

import ipaddress
import logging
import os
import tempfile
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from http import HTTPStatus
from typing import Any, Callable, Iterable, Mapping, Union

from geofence.config import Config
from geofence.dbutils import file_exists, get_database_version
from geofence.logsetup import create_bootstrap_logger, create_logger

PRIVATE_IP_COUNTRY_ALIAS = "PRIVATE"
DEFAULT_DATABASE_NAME = "IP2LOCATION-LITE-DB1.IPV6.BIN"
DEFAULT_BAN_PAGE_NAME = "geoblockban.html"
MAX_DATABASE_AGE = timedelta(days=60)

IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]
IPNetwork = Union[ipaddress.IPv4Network, ipaddress.IPv6Network]
Locate = Callable[[str], str]
Locator = Callable[[str], Locate]

_PRIVATE_NETWORKS = tuple(
    ipaddress.ip_network(cidr)
    for cidr in ("10.0.0.0/8", "172.16.0.0/12", "192.168.0.0/16", "fc00::/7")
)


class GeoBlockError(Exception):
    """Raised for invalid configuration or a failed request check."""


class LookupFailed(GeoBlockError):
    """Raised when an address cannot be parsed or located."""


@dataclass(frozen=True)
class Verdict:
    """Outcome of checking one address: the decision, country and deciding phase."""

    allowed: bool
    country: str
    phase: str


def _fields(**values: Any) -> dict[str, Any]:
    return {"fields": values}


def _parse_ip(ip: str) -> IPAddress:
    if "%" in ip:
        raise ValueError(f"zoned address not accepted: {ip}")
    address = ipaddress.ip_address(ip)
    if isinstance(address, ipaddress.IPv6Address) and address.ipv4_mapped is not None:
        return address.ipv4_mapped
    return address


def _is_private(address: IPAddress) -> bool:
    return any(address in network for network in _PRIVATE_NETWORKS)


def _matching_prefix(address: IPAddress, networks: Iterable[IPNetwork]) -> int | None:
    """Prefix length of the first network containing ``address``, or None."""
    return next((net.prefixlen for net in networks if address in net), None)


def _header(environ: Mapping[str, Any], name: str) -> str:
    key = name.upper().replace("-", "_")
    if key in ("CONTENT_TYPE", "CONTENT_LENGTH"):
        return environ.get(key, "")
    return environ.get(f"HTTP_{key}", "")


def clean_ip_address(ip: str) -> str:
    """Trim ``ip`` and strip a port such as ``:8080`` or ``[::1]:443`` if present."""
    ip = ip.strip()
    if not ip:
        return ""
    if ip.startswith("["):
        host, bracket, rest = ip[1:].partition("]")
        if bracket and rest.startswith(":") and "]" not in rest and "[" not in host:
            return host
        return ip
    host, colon, _ = ip.partition(":")
    if colon and ":" not in ip[len(host) + 1 :] and "[" not in host and "]" not in host:
        return host
    return ip


def _parse_cidr(cidr: str) -> IPNetwork:
    try:
        if "/" not in cidr:
            raise ValueError("missing prefix length")
        return ipaddress.ip_network(cidr, strict=False)
    except ValueError as err:
        raise GeoBlockError(f"parse error on {cidr!r}: {err}") from None


def parse_ip_blocks(blocks: Iterable[str]) -> list[IPNetwork]:
    """Parse CIDR strings into networks, raising GeoBlockError on the first bad one."""
    return [_parse_cidr(cidr) for cidr in blocks]


def search_file(base_file: str, default_file: str, logger: Any) -> str:
    """Resolve a file path.

    An empty ``base_file`` yields ``default_file``; an existing file is
    returned as is; a directory is searched for ``default_file``. When
    nothing is found the error is logged and ``base_file`` is returned.
    """
    if not base_file:
        return default_file
    if file_exists(base_file):
        return base_file

    found = base_file
    for root, dirs, files in os.walk(base_file):
        dirs.sort()
        if default_file in files:
            found = os.path.join(root, default_file)
            break

    if not file_exists(found):
        logger.error("could not find file", extra=_fields(file=default_file, path=found))
    return found


class GeoBlock:
    """WSGI middleware deciding per request whether to pass it on or ban it."""

    def __init__(
        self,
        next_app: Callable,
        *,
        name: str,
        logger: Any,
        enabled: bool = True,
        locate: Locate | None = None,
        database_file: str = "",
        allowed_countries: Iterable[str] = (),
        blocked_countries: Iterable[str] = (),
        default_allow: bool = False,
        allow_private: bool = False,
        ban_if_error: bool = False,
        disallowed_status_code: int = int(HTTPStatus.FORBIDDEN),
        allowed_ip_blocks: Iterable[IPNetwork] = (),
        blocked_ip_blocks: Iterable[IPNetwork] = (),
        ban_html: str = "",
        bypass_headers: Mapping[str, str] | None = None,
        log_banned_requests: bool = False,
    ) -> None:
        self.next_app = next_app
        self.name = name
        self.logger = logger
        self.enabled = enabled
        self.database_file = database_file
        self.allowed_countries = frozenset(allowed_countries)
        self.blocked_countries = frozenset(blocked_countries)
        self.default_allow = default_allow
        self.allow_private = allow_private
        self.ban_if_error = ban_if_error
        self.disallowed_status_code = disallowed_status_code
        self.allowed_ip_blocks = tuple(allowed_ip_blocks)
        self.blocked_ip_blocks = tuple(blocked_ip_blocks)
        self.ban_html = ban_html
        self.bypass_headers = dict(bypass_headers or {})
        self.log_banned_requests = log_banned_requests
        self._locate = locate

    def __call__(self, environ: dict, start_response: Callable) -> Iterable[bytes]:
        if not self.enabled:
            self.logger.debug("plugin disabled, passing request through")
            return self.next_app(environ, start_response)

        for header, expected in self.bypass_headers.items():
            if _header(environ, header) == expected:
                self.logger.debug(
                    "bypassing geoblock due to bypass header match",
                    extra=_fields(
                        header=header,
                        value=expected,
                        remote_addr=environ.get("REMOTE_ADDR", ""),
                        x_real_ip=_header(environ, "X-Real-IP"),
                        x_forwarded_for=_header(environ, "X-Forwarded-For"),
                    ),
                )
                return self.next_app(environ, start_response)

        ips = self.remote_ips(environ)
        ip_chain = ", ".join(ips) if len(ips) > 1 else ""
        request = {
            "host": environ.get("HTTP_HOST", ""),
            "method": environ.get("REQUEST_METHOD", ""),
            "path": environ.get("PATH_INFO", ""),
        }

        for ip in ips:
            try:
                verdict = self.check_allowed(ip)
            except GeoBlockError as err:
                self.logger.error(
                    "request check failed",
                    extra=_fields(ip=ip, ip_chain=ip_chain, **request, phase="", error=str(err)),
                )
                if self.ban_if_error:
                    return self._ban(start_response, ip, "Unknown")
                continue
            if not verdict.allowed:
                if self.log_banned_requests:
                    self.logger.info(
                        "blocked request",
                        extra=_fields(
                            ip=ip,
                            ip_chain=ip_chain,
                            country=verdict.country,
                            **request,
                            phase=verdict.phase,
                        ),
                    )
                return self._ban(start_response, ip, verdict.country)

        return self.next_app(environ, start_response)

    def remote_ips(self, environ: Mapping[str, Any]) -> list[str]:
        """Distinct client addresses from X-Forwarded-For and X-Real-IP, in order seen."""
        seen: dict[str, None] = {}
        for header in ("X-Forwarded-For", "X-Real-IP"):
            for part in _header(environ, header).split(","):
                ip = clean_ip_address(part)
                if ip:
                    seen[ip] = None
        return list(seen)

    def check_allowed(self, ip: str) -> Verdict:
        """Decide whether ``ip`` may pass; raises LookupFailed when it cannot tell."""
        try:
            address = _parse_ip(ip)
        except ValueError:
            raise LookupFailed(f"unable to parse IP address from [{ip}]") from None

        if _is_private(address):
            return Verdict(self.allow_private, PRIVATE_IP_COUNTRY_ALIAS, "allow_private")

        blocked_len = _matching_prefix(address, self.blocked_ip_blocks)
        allowed_len = _matching_prefix(address, self.allowed_ip_blocks)

        # The longer matching prefix wins when both lists match.
        if allowed_len and blocked_len and allowed_len < blocked_len:
            order = ((blocked_len, False, "blocked_ip_block"), (allowed_len, True, "allowed_ip_block"))
        else:
            order = ((allowed_len, True, "allowed_ip_block"), (blocked_len, False, "blocked_ip_block"))
        for matched, allowed, phase in order:
            if matched is not None:
                return Verdict(allowed, "", phase)

        try:
            country = self.lookup(ip)
        except LookupFailed as err:
            raise LookupFailed(f"lookup of {ip} failed: {err}") from err

        if country in self.allowed_countries:
            return Verdict(True, country, "allowed_country")
        if country in self.blocked_countries:
            return Verdict(False, country, "blocked_country")
        return Verdict(self.default_allow, country, "default_allow")

    def lookup(self, ip: str) -> str:
        """Return the short country code for ``ip`` from the database."""
        if self._locate is None:
            raise LookupFailed("no database loaded")
        try:
            country = self._locate(ip)
        except (ValueError, LookupError, OSError) as err:
            raise LookupFailed(str(err)) from err
        if country.lower().startswith("invalid"):
            raise LookupFailed(country)
        return country

    def _ban(self, start_response: Callable, ip: str, country: str) -> list[bytes]:
        code = self.disallowed_status_code
        status = f"{code} {HTTPStatus(code).phrase}"
        if self.ban_html:
            content = self.ban_html.replace("{{.Country}}", country).replace("{{.IP}}", ip)
            body = content.encode("utf-8")
            start_response(
                status,
                [
                    ("Content-Type", "text/html; charset=utf-8"),
                    ("Content-Length", str(len(body))),
                ],
            )
            return [body]
        start_response(status, [("Content-Length", "0")])
        return []


def _auto_update_database(config: Config, current: str, logger: Any) -> str:
    if not config.database_auto_update_dir:
        raise GeoBlockError(
            "database_auto_update_dir must be specified when auto-update is enabled"
        )
    cached = os.path.join(tempfile.gettempdir(), DEFAULT_DATABASE_NAME)
    if file_exists(cached):
        logger.debug("Using already existing database from temp location")
        try:
            get_database_version(cached)
        except (OSError, ValueError) as err:
            logger.warning(f"failed to open database {cached}: {err}")
        else:
            return cached
    return current


def create_plugin(
    next_app: Callable | None,
    config: Config | None,
    name: str = "geoblock",
    locator: Locator | None = None,
) -> GeoBlock:
    """Build the middleware around ``next_app``.

    ``locator`` is called with the database path and returns a function
    mapping an address to its short country code. Raises GeoBlockError
    when the configuration cannot be used.
    """
    bootstrap = create_bootstrap_logger(name)

    if next_app is None:
        raise GeoBlockError(f"{name}: no next handler provided")
    if config is None:
        raise GeoBlockError(f"{name}: no config provided")

    logger = create_logger(name, config.log_level, config.log_format, config.log_path, bootstrap)
    logger.debug(
        "initializing plugin",
        extra=_fields(logLevel=config.log_level, logFormat=config.log_format, logPath=config.log_path),
    )

    if not config.enabled:
        bootstrap.warning("plugin disabled")
        return GeoBlock(next_app, name=name, logger=logger, enabled=False)

    try:
        HTTPStatus(config.disallowed_status_code)
    except ValueError:
        raise GeoBlockError(
            f"{name}: {config.disallowed_status_code} is not a valid http status code"
        ) from None

    database_path = config.database_file_path
    if database_path:
        database_path = search_file(database_path, DEFAULT_DATABASE_NAME, bootstrap)
    if config.database_auto_update:
        database_path = _auto_update_database(config, database_path, logger)

    try:
        version = get_database_version(database_path)
    except (OSError, ValueError) as err:
        raise GeoBlockError(f"{name}: failed to read database version: {err}") from err

    if locator is None:
        raise GeoBlockError(f"{name}: no database locator provided")
    try:
        locate = locator(database_path)
    except (OSError, ValueError) as err:
        raise GeoBlockError(f"{name}: failed to open database: {err}") from err
    logger.debug(f"using ip2location database version: {version} from {database_path}")

    age = datetime.now(timezone.utc) - version.date()
    if age > MAX_DATABASE_AGE:
        bootstrap.warning(
            "ip2location database is more than 2 months old",
            extra=_fields(version=str(version), age=f"{round(age / timedelta(days=1))}d"),
        )

    try:
        allowed_blocks = parse_ip_blocks(config.allowed_ip_blocks)
    except GeoBlockError as err:
        raise GeoBlockError(f"{name}: failed loading allowed CIDR blocks: {err}") from err
    try:
        blocked_blocks = parse_ip_blocks(config.blocked_ip_blocks)
    except GeoBlockError as err:
        raise GeoBlockError(f"{name}: failed loading blocked CIDR blocks: {err}") from err

    ban_html = ""
    if config.ban_html_file_path:
        ban_path = search_file(config.ban_html_file_path, DEFAULT_BAN_PAGE_NAME, bootstrap)
        try:
            with open(ban_path, encoding="utf-8") as page:
                ban_html = page.read()
        except OSError as err:
            raise GeoBlockError(f"{name}: failed to load ban HTML file {ban_path}: {err}") from err

    return GeoBlock(
        next_app,
        name=name,
        logger=logger,
        enabled=True,
        locate=locate,
        database_file=database_path,
        allowed_countries=config.allowed_countries,
        blocked_countries=config.blocked_countries,
        default_allow=config.default_allow,
        allow_private=config.allow_private,
        ban_if_error=config.ban_if_error,
        disallowed_status_code=config.disallowed_status_code,
        allowed_ip_blocks=allowed_blocks,
        blocked_ip_blocks=blocked_blocks,
        ban_html=ban_html,
        bypass_headers=config.bypass_headers,
        log_banned_requests=config.log_banned_requests,
    )