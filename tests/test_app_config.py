import json

import pytest

from utils.app_config import DEFAULT_TOOL_SERVERS, AppConfig

ENV_KEYS = [
    "OPENAI_API_KEY",
    "OPENAI_MODEL",
    "MODEL_MAX_TOKENS",
    "SESSION_TIMEOUT_SECONDS",
    "TOOL_REQUEST_TIMEOUT_SECONDS",
    "TOOL_HANDSHAKE_TIMEOUT_SECONDS",
    "TOOL_SERVERS",
    "TOOL_SERVER_CWD",
    "LOG_LEVEL",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for key in ENV_KEYS:
        monkeypatch.delenv(key, raising=False)


def test_missing_api_key_is_fatal():
    with pytest.raises(RuntimeError):
        AppConfig.from_env()


def test_defaults(monkeypatch):
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")

    config = AppConfig.from_env()

    assert config.openai_model == "gpt-4o"
    assert config.session_timeout == 1800
    assert config.tool_request_timeout == 45.0
    assert config.tool_servers == DEFAULT_TOOL_SERVERS
    assert config.tool_server_cwd is None


def test_overrides(monkeypatch):
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    monkeypatch.setenv("SESSION_TIMEOUT_SECONDS", "90")
    monkeypatch.setenv("TOOL_SERVERS", json.dumps({"echo": ["python", "echo_server.py"]}))
    monkeypatch.setenv("LOG_LEVEL", "debug")

    config = AppConfig.from_env()

    assert config.session_timeout == 90.0
    assert config.tool_servers == {"echo": ["python", "echo_server.py"]}
    assert config.log_level == "DEBUG"


@pytest.mark.parametrize(
    "key, value",
    [
        ("SESSION_TIMEOUT_SECONDS", "soon"),
        ("TOOL_REQUEST_TIMEOUT_SECONDS", "0"),
        ("TOOL_SERVERS", "[1, 2]"),
        ("TOOL_SERVERS", json.dumps({"echo": []})),
        ("MODEL_MAX_TOKENS", "many"),
    ],
)
def test_invalid_values_are_rejected(monkeypatch, key, value):
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    monkeypatch.setenv(key, value)
    with pytest.raises(RuntimeError):
        AppConfig.from_env()
