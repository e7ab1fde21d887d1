"""Client for a locally hosted Ollama server: chat completions and embeddings."""

from __future__ import annotations

import asyncio
import json
import os
from typing import Any
from urllib import error, request

DEFAULT_OLLAMA_BASE_URL = "http://127.0.0.1:11434"
_CHAT_ENDPOINT = "/api/chat"
_EMBED_ENDPOINT = "/api/embeddings"


class LocalLLMError(RuntimeError):
    """Raised when a call to the local Ollama server fails."""


def _resolve_base_url(base_url: str | None) -> str:
    return (base_url or os.getenv("OLLAMA_BASE_URL") or DEFAULT_OLLAMA_BASE_URL).rstrip("/")


def _perform_ollama_request(
    endpoint: str,
    payload: dict[str, Any],
    base_url: str,
    timeout: float,
) -> dict[str, Any]:
    """Blocking POST to the Ollama REST API, returning the decoded JSON body."""
    url = f"{base_url}{endpoint}"
    req = request.Request(
        url,
        data=json.dumps(payload).encode("utf-8"),
        headers={"Content-Type": "application/json"},
        method="POST",
    )

    try:
        with request.urlopen(req, timeout=timeout) as resp:
            raw = resp.read().decode("utf-8")
    except error.HTTPError as exc:
        body = exc.read().decode("utf-8", errors="ignore") if exc.fp else ""
        raise LocalLLMError(
            f"Ollama request to {endpoint} failed with status {exc.code}: {body or exc.reason}"
        ) from exc
    except error.URLError as exc:
        raise LocalLLMError(f"Could not reach Ollama at {url}: {exc.reason}") from exc

    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise LocalLLMError("Ollama returned non-JSON response.") from exc
    if not isinstance(parsed, dict):
        raise LocalLLMError("Ollama returned an unexpected response shape.")
    return parsed


async def call_ollama_chat(
    *,
    system_prompt: str,
    user_prompt: str,
    llm_model: str,
    base_url: str | None = None,
    timeout: float = 120.0,
) -> str:
    """Run a non-streaming chat completion and return the assistant text."""
    system_prompt = system_prompt.strip()
    user_prompt = user_prompt.strip()
    if not user_prompt:
        raise LocalLLMError("Cannot call Ollama with an empty user prompt.")

    messages: list[dict[str, str]] = []
    if system_prompt:
        messages.append({"role": "system", "content": system_prompt})
    messages.append({"role": "user", "content": user_prompt})

    parsed = await asyncio.to_thread(
        _perform_ollama_request,
        _CHAT_ENDPOINT,
        {"model": llm_model, "messages": messages, "stream": False},
        _resolve_base_url(base_url),
        timeout,
    )

    content = (parsed.get("message") or {}).get("content")
    if not content:
        raise LocalLLMError("Ollama response did not include assistant content.")
    return content


async def call_ollama_embedding(
    *,
    text: str,
    model: str,
    base_url: str | None = None,
    timeout: float = 60.0,
) -> list[float]:
    """Embed ``text`` with a local embedding model."""
    parsed = await asyncio.to_thread(
        _perform_ollama_request,
        _EMBED_ENDPOINT,
        {"model": model, "prompt": text},
        _resolve_base_url(base_url),
        timeout,
    )

    vector = parsed.get("embedding")
    if not isinstance(vector, list) or not vector:
        raise LocalLLMError("Ollama response did not include an embedding.")
    return [float(v) for v in vector]


__all__ = [
    "LocalLLMError",
    "call_ollama_chat",
    "call_ollama_embedding",
    "DEFAULT_OLLAMA_BASE_URL",
]
