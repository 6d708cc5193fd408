# geofence

WSGI middleware that decides, request by request, whether a client may reach
the application behind it. The client addresses are taken from the
`X-Forwarded-For` and `X-Real-IP` headers (comma-separated lists, ports such
as `:8080` or `[::1]:443` stripped, duplicates dropped). Each address is
checked in this order:

1. private networks (`10.0.0.0/8`, `172.16.0.0/12`, `192.168.0.0/16`,
   `fc00::/7`): allowed or blocked as a whole by `allow_private`;
2. allowed and blocked CIDR blocks; when both match, the block with the longer
   prefix wins, otherwise an allowed block wins;
3. allowed and blocked countries (ISO 3166-1 alpha-2 codes), allowed first;
4. `default_allow` for everything else.

The first address that is refused bans the request. Banned requests get the
configured status code (403 by default), with an HTML page in which
`{{.Country}}` and `{{.IP}}` are replaced by the client's country and address
when a ban page is configured, or an empty body otherwise. If an address cannot
be parsed or located, the request is banned with country `Unknown` when
`ban_if_error` is set; otherwise that address is skipped. Requests carrying one
of the configured bypass headers with exactly the expected value skip all
checks.

## Usage

```python
from geofence.config import create_config
from geofence.plugin import create_plugin

COUNTRIES = {"8.8.8.8": "US", "1.1.1.1": "AU"}

def locator(database_path):
    # Return a function mapping an address to its short country code.
    return COUNTRIES.__getitem__

config = create_config()
config.enabled = True
config.database_file_path = "/data/IP2LOCATION-LITE-DB1.IPV6.BIN"
config.allowed_countries = ["AU"]
config.allowed_ip_blocks = ["203.0.113.0/24"]
config.allow_private = True

app = create_plugin(my_app, config, "geoblock", locator)
```

`create_plugin(next_app, config, name="geoblock", locator=None)` returns a
`GeoBlock`, itself a WSGI application wrapping `next_app`. The `locator` is
called once with the database path and must return a function from an address
to a country code; that function may raise `ValueError`, `LookupError` or
`OSError`, or return a value starting with `invalid`, to signal a failed
lookup.

`create_plugin` raises `GeoBlockError` when there is no next application or
config, the status code is not a valid HTTP status, the database header cannot
be read, no locator is given, a CIDR block is malformed, or the ban page cannot
be read. A disabled config (`enabled = False`) yields a middleware that passes
every request through.

If `database_file_path` names a directory, it is searched for
`IP2LOCATION-LITE-DB1.IPV6.BIN`; likewise a directory given as
`ban_html_file_path` is searched for `geoblockban.html`. A warning is logged
when the database release date is more than 60 days old.

`geofence.config.Config` is a dataclass of all settings; a bare `Config()`
holds empty values, while `create_config()` sets status 403, `info` level
`text` logging, `ban_if_error`, `log_banned_requests` and database code `DB1`.

A `GeoBlock` can also be queried directly:

- `remote_ips(environ)` returns the distinct client addresses of a request;
- `check_allowed(ip)` returns a `Verdict` with `allowed`, `country` and
  `phase` (`allow_private`, `allowed_ip_block`, `blocked_ip_block`,
  `allowed_country`, `blocked_country` or `default_allow`), raising
  `LookupFailed` when it cannot decide;
- `lookup(ip)` returns the country code of an address, raising `LookupFailed`
  when the lookup fails.

`geofence.plugin` also provides `clean_ip_address`, `parse_ip_blocks` and
`search_file`.

## Database files

`geofence.dbutils` works with IP2Location BIN files:

- `get_database_version(path)` returns a `DBVersion` read from the 512-byte
  file header, raising `ValueError` for a short or invalid header;
  `DBVersion.date()` gives the release date and `str()` gives `year.month.day`;
- `get_date_from_name(path)` reads the date from names such as
  `20240315_IP2LOCATION-LITE-DB1.IPV6.BIN`, raising `ValueError` otherwise;
- `file_exists(path)` and `copy_file(src, dst, overwrite)` are small file
  helpers.

## Logging

`geofence.logsetup.create_logger` builds the middleware's logger: level
`debug`, `info`, `warn` or `error` (anything else means `info`), `text` or
`json` format, written to standard error or, when a path is given, appended to
that file through `geofence.writer.BufferedFileWriter`. The writer flushes once
1 KiB has collected, two seconds after the last flush, or on `flush()` and
`close()`; it can be used as a context manager.

## What the package does not do

- It does not read the country records of a BIN file itself: the country
  lookup is whatever `locator` supplies, and without one `create_plugin`
  raises `GeoBlockError`.
- It does not download or refresh databases. With `database_auto_update`
  enabled, `database_auto_update_dir` must be set, and a valid
  `IP2LOCATION-LITE-DB1.IPV6.BIN` already present in the system temporary
  directory is used in place of the configured path; the update directory is
  not searched, and `database_auto_update_token` and
  `database_auto_update_code` are not used.
- It provides no command-line program or server; serve the returned WSGI
  application with any WSGI server.