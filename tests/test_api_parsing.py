from __future__ import annotations

from datetime import UTC, datetime

from gp51sync._api.login import build_login_params, parse_login_response
from gp51sync._api.positions import build_last_position_params, parse_last_position_response
from gp51sync._api.validate import parse_validate_response
from gp51sync._hashing import md5_hex, password_hash
from gp51sync.models.position import PositionFix
from gp51sync.models.results import ApiFailure, AuthOk, PositionsOk


def test_password_hash_is_lowercase_md5() -> None:
    assert md5_hex("secret") == "5ebe2294ecd0e0f08eab7690d2a6ee69"
    assert password_hash("secret") == "5ebe2294ecd0e0f08eab7690d2a6ee69"
    # Already hashed values are passed through, normalized to lowercase.
    assert password_hash("5EBE2294ECD0E0F08EAB7690D2A6EE69") == "5ebe2294ecd0e0f08eab7690d2a6ee69"


def test_login_params_shape() -> None:
    params = build_login_params(" fleet-admin ", "abc")
    assert params == {"username": "fleet-admin", "password": "abc", "logintype": "WEB", "usertype": "USER"}


def test_login_success_and_failure() -> None:
    ok = parse_login_response({"status": 0, "token": "t-123"}, "fleet-admin")
    assert ok == AuthOk(token="t-123", username="fleet-admin")

    failed = parse_login_response({"status": 1, "cause": "password error"}, "fleet-admin")
    assert isinstance(failed, ApiFailure)
    assert failed.cause == "password error"
    assert failed.status == 1
    assert failed.action == "login"


def test_login_without_token_is_a_failure() -> None:
    result = parse_login_response({"status": "0"}, "fleet-admin")
    assert isinstance(result, ApiFailure)
    assert result.cause == "Login response missing token"


def test_last_position_params() -> None:
    assert build_last_position_params(["1", "2"]) == {"deviceids": ["1", "2"], "lastquerypositiontime": ""}
    since = datetime(2026, 1, 1, tzinfo=UTC)
    params = build_last_position_params(["1"], since)
    assert params["lastquerypositiontime"] == int(since.timestamp() * 1000)


def test_last_position_parses_and_skips_bad_records() -> None:
    response = {
        "status": 0,
        "records": [
            {
                "deviceid": 860001,
                "callat": "22.5431",
                "callon": 114.0579,
                "speed": 42.5,
                "course": 180,
                "updatetime": 1767268800000,
                "strstatusen": "ACC ON",
            },
            {"callat": 1.0, "callon": 2.0},
            "garbage",
        ],
    }
    result = parse_last_position_response(response)

    assert isinstance(result, PositionsOk)
    assert result.skipped == 2
    [fix] = result.records
    assert fix.device_id == "860001"
    assert fix.lat == 22.5431
    assert fix.lon == 114.0579
    assert fix.speed_kph == 42.5
    assert fix.heading_deg == 180
    assert fix.captured_at == datetime(2026, 1, 1, 12, 0, tzinfo=UTC)
    assert fix.status_text == "ACC ON"


def test_last_position_failure_and_empty_records() -> None:
    failed = parse_last_position_response({"status": 3, "cause": "token expired"})
    assert isinstance(failed, ApiFailure)
    assert failed.cause == "token expired"

    empty = parse_last_position_response({"status": 0})
    assert isinstance(empty, PositionsOk)
    assert empty.records == []

    malformed = parse_last_position_response({"status": 0, "records": {"a": 1}})
    assert isinstance(malformed, ApiFailure)


def test_position_fix_sentinels_fall_back_to_defaults() -> None:
    fix = PositionFix.model_validate({"deviceid": "A1", "speed": "--", "callat": "", "updatetime": 1767268800})
    assert fix.speed_kph == 0.0
    assert fix.lat is None
    assert fix.captured_at == datetime(2026, 1, 1, 12, 0, tzinfo=UTC)
    assert fix.raw["speed"] == "--"


def test_negative_speed_is_clamped() -> None:
    assert PositionFix.model_validate({"deviceid": "A1", "speed": -3}).speed_kph == 0.0


def test_validate_response() -> None:
    assert parse_validate_response({"status": 0})
    assert not parse_validate_response({"status": 0, "valid": False})
    assert not parse_validate_response({"status": 1, "cause": "token invalid"})
