"""Tests for the backoff policy and the config loader."""

import pytest

from inventory_service.config import Settings
from inventory_service.retry import Backoff, retry_call


def test_backoff_grows_and_is_bounded():
    slept = []
    backoff = Backoff(initial=0.5, maximum=2.0, sleep=slept.append)
    for _ in range(5):
        backoff.failed()
    assert slept == [0.5, 1.0, 2.0, 2.0, 2.0]


def test_backoff_reset():
    slept = []
    backoff = Backoff(initial=1.0, maximum=10.0, sleep=slept.append)
    backoff.failed()
    backoff.failed()
    backoff.reset()
    backoff.failed()
    assert slept == [1.0, 2.0, 1.0]


def test_fresh_backoff_shares_parameters_not_failures():
    backoff = Backoff(initial=1.0, maximum=4.0, factor=3.0, sleep=lambda _: None)
    backoff.failed()
    fresh = backoff.fresh()
    assert (fresh.initial, fresh.maximum, fresh.factor, fresh.failures) == (1.0, 4.0, 3.0, 0)


def test_retry_call_returns_after_transient_failures():
    attempts = []

    def flaky():
        attempts.append(1)
        if len(attempts) < 3:
            raise ConnectionError("down")
        return "ok"

    assert retry_call(flaky, attempts=3, backoff=Backoff(0, 0), retry_on=(ConnectionError,)) == "ok"
    assert len(attempts) == 3


def test_retry_call_reraises_when_exhausted():
    retried = []

    def always_down():
        raise ConnectionError("down")

    with pytest.raises(ConnectionError):
        retry_call(
            always_down,
            attempts=2,
            backoff=Backoff(0, 0),
            retry_on=(ConnectionError,),
            on_retry=lambda attempt, exc: retried.append(attempt),
        )
    assert retried == [1]


def test_retry_call_does_not_retry_other_errors():
    calls = []

    def broken():
        calls.append(1)
        raise ValueError("bad input")

    with pytest.raises(ValueError):
        retry_call(broken, attempts=5, backoff=Backoff(0, 0), retry_on=(ConnectionError,))
    assert len(calls) == 1


def test_settings_defaults(monkeypatch):
    for name in ("KAFKA_BOOTSTRAP_SERVERS", "KAFKA_CONSUMER_GROUP", "ORDERS_TOPIC", "PORT"):
        monkeypatch.delenv(name, raising=False)
    settings = Settings.from_env()
    assert settings.kafka_bootstrap_servers == "localhost:9092"
    assert settings.consumer_group == "inventory-service-group"
    assert settings.orders_topic == "orders"
    assert (settings.reserved_topic, settings.failed_topic) == ("inventory-reserved", "inventory-failed")
    assert settings.port == 8086


def test_settings_from_env(monkeypatch):
    monkeypatch.setenv("DATABASE_URL", "sqlite://")
    monkeypatch.setenv("KAFKA_BOOTSTRAP_SERVERS", "kafka:9092")
    monkeypatch.setenv("PUBLISH_RETRIES", "5")
    monkeypatch.setenv("AUTO_CREATE_SCHEMA", "false")
    settings = Settings.from_env()
    assert settings.database_url == "sqlite://"
    assert settings.kafka_bootstrap_servers == "kafka:9092"
    assert settings.publish_retries == 5
    assert settings.auto_create_schema is False
