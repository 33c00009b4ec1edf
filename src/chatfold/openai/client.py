import logging
from copy import deepcopy
from typing import Any

import httpx
from openai import AsyncOpenAI

from ..config import APIProvider, get_openai_provider
from ..errors import ConfigError

logger = logging.getLogger(__name__)


def create_client(
    provider: APIProvider | None = None,
    *,
    timeout: float = 120.0,
    max_retries: int = 2,
    http_client: httpx.AsyncClient | None = None,
    extra_client_params: dict[str, Any] | None = None,
) -> AsyncOpenAI:
    """Build the OpenAI client that producers receive explicitly."""
    _provider = provider or get_openai_provider()
    if not _provider.get("api_key"):
        raise ConfigError(
            f"No API key configured for provider '{_provider['name']}'. "
            "Set the OPENAI_API_KEY environment variable."
        )

    _client_params = deepcopy(extra_client_params or {})
    _client_params["timeout"] = timeout
    _client_params["max_retries"] = max_retries
    if http_client is not None:
        _client_params["http_client"] = http_client

    logger.debug("Creating OpenAI client for %s", _provider.get("base_url"))

    return AsyncOpenAI(
        base_url=_provider.get("base_url"),
        api_key=_provider.get("api_key"),
        **_client_params,
    )
