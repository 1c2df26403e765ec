import json
import pathlib
import sys
from pathlib import Path

import pytest
from pydantic import ValidationError

sys.path.append(str(pathlib.Path(__file__).resolve().parents[2]))

from config import Settings, get_settings  # noqa: E402
from orderdesk.app.utils.ratelimits import admin_action, order_placement  # noqa: E402

CONFIG_JSON = Path(__file__).resolve().parents[2] / "config.json"


def _settings():
    get_settings.cache_clear()
    return get_settings()


@pytest.fixture(autouse=True)
def _reset_cache():
    yield
    get_settings.cache_clear()


def test_defaults_from_config(monkeypatch):
    monkeypatch.delenv("BUSINESS_TIMEZONE", raising=False)
    settings = _settings()
    assert settings.business_timezone == json.loads(CONFIG_JSON.read_text())["business_timezone"]


def test_env_overrides(monkeypatch):
    monkeypatch.setenv("REDIS_URL", "redis://override")
    monkeypatch.setenv("ORDER_COOLDOWN_SECS", "10")
    settings = _settings()
    assert settings.redis_url == "redis://override"
    assert settings.order_cooldown_secs == 10


def test_cooldown_capped_at_a_minute():
    with pytest.raises(ValidationError):
        Settings(order_cooldown_secs=61)
    with pytest.raises(ValidationError):
        Settings(admin_cooldown_secs=0)


def test_policy_env_override_is_clamped(monkeypatch):
    settings = Settings(order_cooldown_secs=30, admin_cooldown_secs=20)
    assert order_placement(settings).cooldown_secs == 30
    monkeypatch.setenv("RL_ORDER_PLACEMENT_COOLDOWN", "600")
    assert order_placement(settings).cooldown_secs == 60
    monkeypatch.setenv("RL_ADMIN_ACTION_COOLDOWN", "5")
    assert admin_action(settings).cooldown_secs == 5


def test_origins_and_courier_flags():
    settings = Settings(
        allowed_origins=" https://a.example, ,https://b.example",
        courier_api_key="pk",
    )
    assert settings.origins == ["https://a.example", "https://b.example"]
    assert not settings.courier_configured
    assert not settings.store_configured
    assert Settings(courier_api_key="pk", courier_api_secret="sk").courier_configured
