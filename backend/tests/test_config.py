"""Configuration tests"""

import pytest

from image_proxy import ProxySettings
from image_proxy.config import DEFAULT_ALLOWED_HOSTS, MB


def test_defaults():
    settings = ProxySettings.from_env({})

    assert settings.allowed_hosts == DEFAULT_ALLOWED_HOSTS
    assert settings.url_encoding == "plain"
    assert settings.max_url_length == 512
    assert settings.fetch_timeout == 5.0
    assert settings.cache_ttl_seconds == 3600
    assert settings.rate_limit_max_requests == 100
    assert settings.rate_limit_window_seconds == 900


def test_from_env_overrides():
    settings = ProxySettings.from_env({
        "IMAGE_PROXY_ALLOWED_HOSTS": " a.example.com , b.example.com,,",
        "IMAGE_PROXY_URL_ENCODING": "BASE64",
        "IMAGE_MAX_SIZE_MB": "2",
        "IMAGE_PROXY_SINGLE_FLIGHT": "off",
        "RATE_LIMIT_WINDOW_SECONDS": "60",
    })

    assert settings.allowed_hosts == ("a.example.com", "b.example.com")
    assert settings.url_encoding == "base64"
    assert settings.max_response_bytes == 2 * MB
    assert settings.single_flight is False
    assert settings.rate_limit_window_seconds == 60


def test_blank_values_fall_back_to_defaults():
    assert ProxySettings.from_env({"IMAGE_PROXY_MAX_URL_LENGTH": "  "}).max_url_length == 512


@pytest.mark.parametrize("environ", [
    {"IMAGE_PROXY_URL_ENCODING": "hex"},
    {"IMAGE_CACHE_TTL_SECONDS": "0"},
    {"IMAGE_PROXY_SINGLE_FLIGHT": "maybe"},
    {"IMAGE_FETCH_TIMEOUT_SECONDS": "soon"},
    {"IMAGE_PROXY_ALLOWED_HOSTS": " , "},
])
def test_invalid_values_raise(environ):
    with pytest.raises(ValueError):
        ProxySettings.from_env(environ)
