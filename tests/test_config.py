from datetime import datetime
from pathlib import Path

import pytest

from pointsbank.admin import AuditLog
from pointsbank.config import DEFAULT_DATABASE_URL, Settings
from pointsbank.ops import StructuredLogger


def test_defaults_from_empty_environment() -> None:
    settings = Settings.from_env({})
    assert settings.database_url == DEFAULT_DATABASE_URL
    assert settings.timezone == "Asia/Shanghai"
    assert settings.daily_exchange_cap == 3
    assert settings.exchange_price == 10
    assert settings.max_retries == 5
    assert settings.log_path is None
    assert str(settings.tz) == "Asia/Shanghai"


def test_environment_overrides(tmp_path) -> None:
    settings = Settings.from_env(
        {
            "POINTSBANK_DATABASE_URL": "sqlite://",
            "POINTSBANK_TIMEZONE": "Europe/Berlin",
            "POINTSBANK_DAILY_EXCHANGE_CAP": "5",
            "POINTSBANK_EXCHANGE_PRICE": " 20 ",
            "POINTSBANK_MAX_RETRIES": "2",
            "POINTSBANK_LOG_PATH": str(tmp_path / "events.jsonl"),
        }
    )
    assert settings.database_url == "sqlite://"
    assert settings.timezone == "Europe/Berlin"
    assert (settings.daily_exchange_cap, settings.exchange_price, settings.max_retries) == (5, 20, 2)
    assert settings.log_path == Path(tmp_path / "events.jsonl")


@pytest.mark.parametrize(
    "env",
    [
        {"POINTSBANK_DAILY_EXCHANGE_CAP": "three"},
        {"POINTSBANK_EXCHANGE_PRICE": "0"},
        {"POINTSBANK_MAX_RETRIES": "-1"},
        {"POINTSBANK_TIMEZONE": "Mars/Olympus"},
    ],
)
def test_invalid_values_raise(env) -> None:
    with pytest.raises(ValueError):
        Settings.from_env(env)


def test_log_file_receives_events(make_bank, tmp_path) -> None:
    log_path = tmp_path / "logs" / "events.jsonl"
    bank = make_bank(logger=StructuredLogger(path=log_path))
    member = bank.create_member("family-a", "Ann")
    lines = log_path.read_text(encoding="utf-8").splitlines()
    assert any('"member_created"' in line and member.id in line for line in lines)


def test_logger_filters_on_fields_and_uses_clock() -> None:
    moment = datetime(2024, 3, 1, 4, 0, 0)
    logger = StructuredLogger(retain=3, clock=lambda: moment)
    logger.log("quota_consumed", member="a", used=1)
    logger.log("quota_consumed", member="b", used=1)
    logger.log("quota_consumed", member="a", used=2)

    assert [event["used"] for event in logger.events("quota_consumed", member="a")] == [1, 2]
    assert logger.last("quota_consumed", member="b")["used"] == 1
    assert logger.last("badge_granted") is None
    assert logger.tail(1)[0]["timestamp"] == moment.isoformat()

    logger.log("badge_granted", member="a")
    assert len(logger.tail(10)) == 3
    assert logger.events("quota_consumed", member="a", used=1) == ()


def test_audit_log_scopes_events_by_family() -> None:
    moment = datetime(2024, 3, 1, 4, 0, 0)
    audit = AuditLog(retain=2, clock=lambda: moment)
    audit.record("mum", "apply_penalty", "kid-1", family_id="family-a", details={"points": -5})
    audit.record("dad", "apply_penalty", "kid-2", family_id="family-b", details={"points": -1})

    (event,) = audit.entries(family_id="family-a")
    assert event.as_dict() == {
        "actor": "mum",
        "action": "apply_penalty",
        "target": "kid-1",
        "familyId": "family-a",
        "timestamp": moment.isoformat(),
        "details": {"points": -5},
    }
    assert audit.entries(actor="dad", action="apply_penalty")[0].target == "kid-2"

    audit.record("mum", "create_reward", "7", family_id="family-a")
    assert [event.action for event in audit.entries()] == ["apply_penalty", "create_reward"]
    assert audit.latest("apply_penalty").actor == "dad"
    assert audit.latest().target == "7"
