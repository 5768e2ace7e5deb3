# chatbridge/client.py
"""Forward requests to an OpenAI-compatible LLM provider.

Each function maps to exactly one HTTP call:

* :func:`get_models` – ``GET /v1/models``
* :func:`get_completion` – ``POST /v1/chat/completions`` (``stream=false``)
* :func:`stream_completion` – the same endpoint with ``stream=true``
* :func:`generate_image` – ``POST /v1/images/generations``

Authentication is a bearer token.  A non-2xx answer raises
:class:`chatbridge.errors.ProviderError` carrying the provider's
``error.message``.  Nothing is retried; network errors from
:mod:`requests` are logged and propagate unchanged.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterator

import requests

from .config import ProviderConfiguration
from .errors import EmptyStreamError, ProviderError
from .models import ChatCompletion, ImageResponse, Models, as_payload

log = logging.getLogger(__name__)


def _headers(api_key: str) -> Dict[str, str]:
    return {
        "Authorization": f"Bearer {api_key}",
        "Content-Type": "application/json",
    }


def _raise_for_provider_error(resp: requests.Response) -> None:
    """Turn a non-2xx response into :class:`ProviderError`.

    The provider reports failures as ``{"error": {"message": ...}}``.  A
    body that does not follow that shape still fails, with a generic
    message naming the status code.
    """
    if resp.ok:
        return
    try:
        message = resp.json()["error"]["message"]
    except (ValueError, KeyError, TypeError):
        raise ProviderError(f"HTTP error {resp.status_code}", status_code=resp.status_code) from None
    raise ProviderError(message, status_code=resp.status_code)


def get_models(base_url: str, api_key: str, *, timeout: float | None = None) -> Models:
    """Return the models the provider serves."""
    try:
        resp = requests.get(f"{base_url}/v1/models", headers=_headers(api_key), timeout=timeout)
        _raise_for_provider_error(resp)
        return Models.from_dict(resp.json())
    except Exception as exc:
        log.error("Error fetching models: %s", exc)
        raise


def get_completion(
    base_url: str, api_key: str, request: Any, *, timeout: float | None = None
) -> ChatCompletion:
    """Run a non-streaming chat completion.

    *request* is a :class:`chatbridge.models.ChatRequest` or a plain
    ``dict`` with the same keys.
    """
    payload = {**as_payload(request), "stream": False}
    try:
        resp = requests.post(
            f"{base_url}/v1/chat/completions",
            headers=_headers(api_key),
            json=payload,
            timeout=timeout,
        )
        _raise_for_provider_error(resp)
        return ChatCompletion.from_dict(resp.json())
    except Exception as exc:
        log.error("Error creating completion: %s", exc)
        raise


def stream_completion(
    base_url: str, api_key: str, request: Any, *, timeout: float | None = None
) -> Iterator[str]:
    """Yield the raw text of a streamed completion as it arrives.

    Chunks are the provider's bytes decoded as UTF-8, unparsed (for most
    providers that means server-sent-event lines).  The request is sent
    when iteration starts; stopping early (``break`` or ``close()``)
    closes the connection.  A response with no body, or one that ends
    before any text arrives, raises :class:`EmptyStreamError`.
    """
    payload = {**as_payload(request), "stream": True}
    try:
        resp = requests.post(
            f"{base_url}/v1/chat/completions",
            headers=_headers(api_key),
            json=payload,
            stream=True,
            timeout=timeout,
        )
    except Exception as exc:
        log.error("Error streaming completion: %s", exc)
        raise
    try:
        _raise_for_provider_error(resp)
        if (
            resp.status_code == 204
            or resp.headers.get("Content-Length") == "0"
            or resp.raw is None
        ):
            raise EmptyStreamError("No streamable response", status_code=resp.status_code)
        resp.encoding = "utf-8"
        received = False
        for chunk in resp.iter_content(chunk_size=None, decode_unicode=True):
            if chunk:
                received = True
                yield chunk
        if not received:
            raise EmptyStreamError("No streamable response", status_code=resp.status_code)
    except Exception as exc:
        log.error("Error streaming completion: %s", exc)
        raise
    finally:
        resp.close()


def generate_image(
    base_url: str, api_key: str, request: Any, *, timeout: float | None = None
) -> ImageResponse:
    """Ask the provider to generate one or more images."""
    try:
        resp = requests.post(
            f"{base_url}/v1/images/generations",
            headers=_headers(api_key),
            json=as_payload(request),
            timeout=timeout,
        )
        _raise_for_provider_error(resp)
        return ImageResponse.from_dict(resp.json())
    except Exception as exc:
        log.error("Error generating image: %s", exc)
        raise


class LLMClient:
    """The functions above bound to one :class:`ProviderConfiguration`."""

    def __init__(self, config: ProviderConfiguration | None = None) -> None:
        self.config = config or ProviderConfiguration.from_env()

    def get_models(self) -> Models:
        return get_models(self.config.base_url, self.config.api_key, timeout=self.config.timeout)

    def get_completion(self, request: Any) -> ChatCompletion:
        return get_completion(
            self.config.base_url, self.config.api_key, request, timeout=self.config.timeout
        )

    def stream_completion(self, request: Any) -> Iterator[str]:
        return stream_completion(
            self.config.base_url, self.config.api_key, request, timeout=self.config.timeout
        )

    def generate_image(self, request: Any) -> ImageResponse:
        return generate_image(
            self.config.base_url, self.config.api_key, request, timeout=self.config.timeout
        )


def get_client() -> LLMClient:
    """Return a client configured from the environment."""
    return LLMClient()


__all__ = [
    "get_models",
    "get_completion",
    "stream_completion",
    "generate_image",
    "LLMClient",
    "get_client",
]
