"""Tests for settings validation."""

from decimal import Decimal

import pytest
from pydantic import ValidationError

from config import Settings
from poolrewards.enums import Mode


@pytest.fixture()
def env(monkeypatch: pytest.MonkeyPatch) -> pytest.MonkeyPatch:
    for name in ("CUSTOM_MARGIN", "KOIOS_TOKEN", "PROXY_PREFIX", "PORT"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("IP", "127.0.0.1")
    monkeypatch.setenv("POOL_ID", "pool1test")
    monkeypatch.setenv("MODE", "MEDIAN_MARGIN")
    monkeypatch.setenv("API_URL", "https://api.koios.rest/api/v1/")
    return monkeypatch


class TestSettings:
    def test_defaults(self, env: pytest.MonkeyPatch) -> None:
        settings: Settings = Settings()
        assert settings.mode is Mode.MEDIAN_MARGIN
        assert settings.port == 5000
        assert settings.proxy_prefix == "/koios"
        assert settings.koios.api_url == "https://api.koios.rest/api/v1"
        assert settings.koios.token is None
        assert settings.koios.timeout == 30.0

    def test_custom_margin_required_in_custom_mode(self, env: pytest.MonkeyPatch) -> None:
        env.setenv("MODE", "CUSTOM_MARGIN")
        with pytest.raises(ValidationError, match="CUSTOM_MARGIN"):
            Settings()

    def test_custom_margin_parsed_as_decimal(self, env: pytest.MonkeyPatch) -> None:
        env.setenv("MODE", "CUSTOM_MARGIN")
        env.setenv("CUSTOM_MARGIN", "0.015")
        assert Settings().custom_margin == Decimal("0.015")

    @pytest.mark.parametrize("value", ["-0.1", "1.5"])
    def test_custom_margin_out_of_range(self, env: pytest.MonkeyPatch, value: str) -> None:
        env.setenv("MODE", "CUSTOM_MARGIN")
        env.setenv("CUSTOM_MARGIN", value)
        with pytest.raises(ValidationError, match="between 0 and 1"):
            Settings()

    def test_custom_margin_ignored_in_other_modes(self, env: pytest.MonkeyPatch) -> None:
        env.setenv("CUSTOM_MARGIN", "7")
        assert Settings().custom_margin is None

    def test_unknown_mode_rejected(self, env: pytest.MonkeyPatch) -> None:
        env.setenv("MODE", "FLAT")
        with pytest.raises(ValidationError):
            Settings()

    def test_blank_pool_id_rejected(self, env: pytest.MonkeyPatch) -> None:
        env.setenv("POOL_ID", "   ")
        with pytest.raises(ValidationError):
            Settings()

    def test_proxy_prefix_normalized(self, env: pytest.MonkeyPatch) -> None:
        env.setenv("PROXY_PREFIX", "upstream/")
        assert Settings().proxy_prefix == "/upstream"

    def test_blank_token_is_none(self, env: pytest.MonkeyPatch) -> None:
        env.setenv("KOIOS_TOKEN", "  ")
        assert Settings().koios.token is None
        env.setenv("KOIOS_TOKEN", "abc")
        assert Settings().koios.token == "abc"
