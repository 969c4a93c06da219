import pytest

from errors import InvalidArgument, ValidationError
from settings import Settings
from validation import parse_limit, parse_proposal_id, parse_vote_id, parse_voter_address, validate_deadline


@pytest.mark.parametrize("raw, expected", [(0, 0), (7, 7), ("12", 12), (" 3 ", 3)])
def test_parse_proposal_id(raw, expected):
    assert parse_proposal_id(raw) == expected


@pytest.mark.parametrize("raw", [None, True, -1, "-1", "1.0", "", 2.0, [1], "--5", "\u00b2", "\u0661"])
def test_parse_proposal_id_rejects(raw):
    with pytest.raises(InvalidArgument):
        parse_proposal_id(raw)


def test_parse_voter_address():
    assert parse_voter_address("0x" + "AbCd" * 10) == "0x" + "abcd" * 10
    for raw in ("abcd" * 10, "0x" + "ab" * 19, 123, None):
        with pytest.raises(InvalidArgument):
            parse_voter_address(raw)


def test_parse_vote_id():
    assert parse_vote_id("AB" * 12) == "ab" * 12
    with pytest.raises(InvalidArgument):
        parse_vote_id("ab" * 13)


def test_validate_deadline():
    assert validate_deadline(None) == 0
    assert validate_deadline(1700000000.9) == 1700000000
    for raw in (True, -1, "soon"):
        with pytest.raises(ValidationError):
            validate_deadline(raw)


def test_parse_limit():
    assert parse_limit("20", default=50) == 20
    assert parse_limit("9999", default=50) == 500
    assert parse_limit("0", default=50) == 1
    assert parse_limit("many", default=50) == 50


def test_settings_from_env(monkeypatch):
    monkeypatch.setenv("APP_ENV", "production")
    monkeypatch.setenv("DATABASE_URL", "postgresql://voting@localhost/voting")
    monkeypatch.delenv("STORE_BACKEND", raising=False)
    monkeypatch.setenv("LEDGER_MODE", "algorand")
    monkeypatch.setenv("ALGORAND_APP_ID", "77")
    monkeypatch.setenv("ENFORCE_DEADLINE", "yes")
    monkeypatch.setenv("LOG_LEVEL", "debug")

    settings = Settings.from_env()
    assert settings.is_production
    assert settings.store_backend == "postgres"
    assert settings.ledger_mode == "algorand"
    assert settings.algorand_app_id == 77
    assert settings.enforce_deadline is True
    assert settings.log_level == "DEBUG"


def test_settings_defaults_to_memory_store(monkeypatch):
    monkeypatch.delenv("DATABASE_URL", raising=False)
    monkeypatch.delenv("STORE_BACKEND", raising=False)
    assert Settings.from_env().store_backend == "memory"
