import os

import pytest

import env_validation
from env_validation import EnvironmentError, get_env_float, get_env_int, validate_environment
from i18n import resolve_locale, weekday_labels

_VARS = (
    "DB_PATH",
    "DEFAULT_LOCALE",
    "SUMMARY_RPC_URL",
    "SUMMARY_RPC_KEY",
    "SUMMARY_RPC_TIMEOUT",
    "CODE_VALIDATION_LIMIT",
    "CODE_VALIDATION_WINDOW",
)


@pytest.fixture
def clean_env(monkeypatch):
    for var in _VARS:
        # setenv first so undo also removes values validate_environment() writes
        monkeypatch.setenv(var, "")
        monkeypatch.delenv(var)
    return monkeypatch


def test_defaults_are_applied(clean_env, caplog):
    with caplog.at_level("WARNING", logger=env_validation.__name__):
        validate_environment()

    assert os.environ["DB_PATH"] == "data.db"
    assert os.environ["DEFAULT_LOCALE"] == "it"
    assert os.environ["SUMMARY_RPC_TIMEOUT"] == "5"
    assert os.environ["CODE_VALIDATION_LIMIT"] == "10"
    assert "SUMMARY_RPC_URL" in caplog.text


def test_rejects_bad_rpc_url(clean_env):
    clean_env.setenv("SUMMARY_RPC_URL", "ftp://summaries")
    with pytest.raises(EnvironmentError):
        validate_environment()


def test_rejects_unknown_locale(clean_env):
    clean_env.setenv("DEFAULT_LOCALE", "pt")
    with pytest.raises(EnvironmentError):
        validate_environment()


@pytest.mark.parametrize("var, value", [("SUMMARY_RPC_TIMEOUT", "0"), ("CODE_VALIDATION_WINDOW", "soon")])
def test_rejects_bad_numbers(clean_env, var, value):
    clean_env.setenv(var, value)
    with pytest.raises(EnvironmentError):
        validate_environment()


def test_accepts_full_configuration(clean_env):
    clean_env.setenv("SUMMARY_RPC_URL", "https://rpc.example.com")
    clean_env.setenv("SUMMARY_RPC_KEY", "secret")
    clean_env.setenv("DEFAULT_LOCALE", "en")
    validate_environment()


def test_typed_getters(clean_env):
    clean_env.setenv("COUNT", "12")
    clean_env.setenv("BROKEN", "twelve")
    clean_env.setenv("RATIO", "0.5")

    assert get_env_int("COUNT", 1) == 12
    assert get_env_int("BROKEN", 7) == 7
    assert get_env_float("RATIO", 1.0) == 0.5
    assert get_env_float("MISSING", 2.5) == 2.5


def test_locale_resolution(clean_env):
    assert resolve_locale("en-GB") == "en"
    assert resolve_locale("fr_FR") == "fr"
    assert resolve_locale("pt") == "it"
    clean_env.setenv("DEFAULT_LOCALE", "es")
    assert resolve_locale(None) == "es"
    assert weekday_labels("de")[0] == "Mo"
