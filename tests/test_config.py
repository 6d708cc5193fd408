from http import HTTPStatus

from geofence.config import Config, create_config


def test_create_config_defaults():
    cfg = create_config()
    assert cfg.disallowed_status_code == HTTPStatus.FORBIDDEN
    assert cfg.log_level == "info"
    assert cfg.log_format == "text"
    assert cfg.log_path == ""
    assert cfg.ban_if_error is True
    assert cfg.log_banned_requests is True
    assert cfg.database_auto_update_code == "DB1"
    assert cfg.bypass_headers == {}
    assert cfg.enabled is False


def test_bare_config_is_empty():
    cfg = Config()
    assert cfg.enabled is False
    assert cfg.disallowed_status_code == 0
    assert cfg.ban_if_error is False
    assert cfg.allowed_countries == []
    assert cfg.log_level == ""
    assert cfg.database_auto_update_code == ""


def test_mutable_defaults_are_not_shared():
    first = create_config()
    second = create_config()
    first.bypass_headers["X-Bypass-Key"] = "secret"
    assert second.bypass_headers == {}

    a = Config()
    b = Config()
    a.allowed_countries.append("DE")
    assert b.allowed_countries == []