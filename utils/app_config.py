import json
import os
from dataclasses import dataclass, field
from typing import Dict, List, Optional

DEFAULT_TOOL_SERVERS: Dict[str, List[str]] = {
    "custom": ["node", "server.js"],
    "playwright": ["npx", "@executeautomation/playwright-mcp-server"],
}


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = float(raw)
    except ValueError as exc:
        raise RuntimeError(f"{name}={raw!r} must be a number of seconds.") from exc
    if value <= 0:
        raise RuntimeError(f"{name} must be greater than zero.")
    return value


def _tool_servers_env(name: str) -> Dict[str, List[str]]:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return {key: list(value) for key, value in DEFAULT_TOOL_SERVERS.items()}
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise RuntimeError(f"{name} must be a JSON object mapping server names to command lists.") from exc
    if not isinstance(parsed, dict):
        raise RuntimeError(f"{name} must be a JSON object mapping server names to command lists.")

    servers: Dict[str, List[str]] = {}
    for server, command in parsed.items():
        if not isinstance(command, list) or not command or not all(isinstance(part, str) for part in command):
            raise RuntimeError(f"{name}: command for '{server}' must be a non-empty list of strings.")
        servers[str(server)] = command
    return servers


@dataclass
class AppConfig:
    """
    Runtime settings read from the environment (and `.env` via python-dotenv).

    - OPENAI_API_KEY is required; everything else has a default.
    - TOOL_SERVERS is a JSON object such as
      {"playwright": ["npx", "@executeautomation/playwright-mcp-server"]}.
    """

    openai_api_key: str
    openai_model: str = "gpt-4o"
    model_max_tokens: int = 2048
    session_timeout: float = 30 * 60
    tool_request_timeout: float = 45.0
    tool_handshake_timeout: float = 15.0
    tool_servers: Dict[str, List[str]] = field(default_factory=dict)
    tool_server_cwd: Optional[str] = None
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "AppConfig":
        api_key = os.getenv("OPENAI_API_KEY")
        if not api_key:
            raise RuntimeError("OPENAI_API_KEY environment variable is not set")

        max_tokens_raw = os.getenv("MODEL_MAX_TOKENS", "2048")
        try:
            max_tokens = int(max_tokens_raw)
        except ValueError as exc:
            raise RuntimeError(f"MODEL_MAX_TOKENS={max_tokens_raw!r} must be an integer.") from exc

        return cls(
            openai_api_key=api_key,
            openai_model=os.getenv("OPENAI_MODEL", "gpt-4o"),
            model_max_tokens=max_tokens,
            session_timeout=_float_env("SESSION_TIMEOUT_SECONDS", 30 * 60),
            tool_request_timeout=_float_env("TOOL_REQUEST_TIMEOUT_SECONDS", 45.0),
            tool_handshake_timeout=_float_env("TOOL_HANDSHAKE_TIMEOUT_SECONDS", 15.0),
            tool_servers=_tool_servers_env("TOOL_SERVERS"),
            tool_server_cwd=os.getenv("TOOL_SERVER_CWD") or None,
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        )
