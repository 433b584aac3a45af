import pytest

from ticketproxy.config import DEFAULT_BASE_URL, AppConfig, ProxySettings


def test_defaults_from_empty_env():
    cfg = AppConfig.from_env({})

    assert cfg.base_url == DEFAULT_BASE_URL
    assert cfg.api_key == ""
    assert cfg.proxy_timeout_ms == 15000
    assert cfg.proxy_max_retries == 2
    assert cfg.proxy_backoff_ms == 250
    assert cfg.cors_allowed_origins == ("*",)
    assert cfg.log_level == "info"


def test_values_are_read_from_env():
    cfg = AppConfig.from_env({
        "BASE_URL": "https://api.example.test/",
        "API_KEY": " secret ",
        "PROXY_REQUEST_TIMEOUT_MS": "3000",
        "PROXY_MAX_RETRIES": "0",
        "PROXY_BACKOFF_MS": "100",
        "CORS_ALLOWED_ORIGINS": "https://admin.test, https://shop.test",
        "CORS_ALLOW_CREDENTIALS": "false",
        "LOG_LEVEL": "DEBUG",
        "APP_DEBUG": "1",
    })

    assert cfg.base_url == "https://api.example.test"
    assert cfg.api_key == "secret"
    assert cfg.proxy_timeout_ms == 3000
    assert cfg.proxy_max_retries == 0
    assert cfg.cors_allowed_origins == ("https://admin.test", "https://shop.test")
    assert cfg.cors_allow_credentials is False
    assert cfg.log_level == "debug"
    assert cfg.debug is True


def test_api_base_url_takes_precedence():
    cfg = AppConfig.from_env({"API_BASE_URL": "https://new.test", "BASE_URL": "https://old.test"})
    assert cfg.base_url == "https://new.test"


def test_proxy_settings_carry_config_values():
    settings = AppConfig(base_url="https://u.test", api_key="k", proxy_max_retries=4).proxy_settings()

    assert settings == ProxySettings(base_url="https://u.test", api_key="k", max_retries=4)


@pytest.mark.parametrize(
    "kwargs",
    [
        {"max_retries": -1},
        {"backoff_ms": 0},
        {"timeout_ms": 0},
        {"base_url": ""},
    ],
)
def test_invalid_proxy_settings(kwargs):
    values = dict(base_url="https://u.test")
    values.update(kwargs)
    with pytest.raises(ValueError):
        ProxySettings(**values)
