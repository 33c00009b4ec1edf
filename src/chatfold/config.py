import os
import re
from typing import Any

from dotenv import load_dotenv
from typing_extensions import TypedDict

from .errors import ConfigError

DEFAULT_MODEL = "gpt-5-nano"
DEFAULT_BASE_URL = "https://api.openai.com/v1"
DEFAULT_RELAY_HOST = "127.0.0.1"
DEFAULT_RELAY_PORT = 8000

_REASONING_MODEL = re.compile(r"^(o\d|gpt-5)")


class APIProvider(TypedDict):
    name: str
    base_url: str | None
    api_key: str | None


class ResponseParams(TypedDict, total=False):
    model: str
    instructions: str | None
    tools: list[dict[str, Any]] | None
    temperature: float | None


class RelaySettings(TypedDict):
    host: str
    port: int
    upstream: APIProvider


def get_openai_provider(*, load_env: bool = True) -> APIProvider:
    """Provider for the OpenAI-compatible upstream, read from the environment."""
    if load_env:
        load_dotenv()
    return APIProvider(
        name="openai",
        base_url=os.getenv("OPENAI_BASE_URL") or DEFAULT_BASE_URL,
        api_key=os.getenv("OPENAI_API_KEY"),
    )


def get_relay_provider(*, load_env: bool = True) -> APIProvider:
    if load_env:
        load_dotenv()
    base_url = os.getenv("CHATFOLD_RELAY_URL")
    if not base_url:
        raise ConfigError(
            "No relay URL configured. Set the CHATFOLD_RELAY_URL environment "
            "variable, e.g. http://127.0.0.1:8000/api/v1"
        )
    return APIProvider(
        name="relay", base_url=base_url, api_key=os.getenv("CHATFOLD_RELAY_KEY")
    )


def get_relay_settings(*, load_env: bool = True) -> RelaySettings:
    if load_env:
        load_dotenv()
    port = os.getenv("CHATFOLD_RELAY_PORT") or str(DEFAULT_RELAY_PORT)
    try:
        port_num = int(port)
    except ValueError as exc:
        raise ConfigError(f"CHATFOLD_RELAY_PORT must be an integer, got {port!r}") from exc
    return RelaySettings(
        host=os.getenv("CHATFOLD_RELAY_HOST") or DEFAULT_RELAY_HOST,
        port=port_num,
        upstream=get_openai_provider(load_env=False),
    )


def resolve_model(params: ResponseParams | None) -> str:
    return (params or {}).get("model") or DEFAULT_MODEL


def reasoning_for(model: str) -> dict[str, str] | None:
    # Only reasoning models accept a summary request
    if _REASONING_MODEL.match(model):
        return {"summary": "detailed"}
    return None
