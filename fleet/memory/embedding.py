"""Embedding client for OpenAI and Gemini over httpx.

`embed` never raises: every failure (missing key, timeout, non-2xx,
malformed body) comes back as an EmbeddingResult with ok=False.
"""

import logging
import math
import os
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

import httpx

from fleet.lib import secrets

logger = logging.getLogger(__name__)

OPENAI_ENDPOINT = "https://api.openai.com/v1/embeddings"
GEMINI_BASE = "https://generativelanguage.googleapis.com/v1beta"


class TaskType(str, Enum):
    RETRIEVAL_DOCUMENT = "RETRIEVAL_DOCUMENT"
    RETRIEVAL_QUERY = "RETRIEVAL_QUERY"


@dataclass
class EmbeddingRequest:
    provider: str
    model: str
    dimensions: int
    timeout_ms: int
    task_type: TaskType | None = None


@dataclass
class EmbeddingResult:
    vector: list[float] = field(default_factory=list)
    ok: bool = False
    error: str | None = None


Embedder = Callable[[str, EmbeddingRequest], EmbeddingResult]


@dataclass
class _ProviderCall:
    endpoint: str
    api_key: str | None
    headers: dict[str, str]
    body: dict[str, Any]
    parse: Callable[[Any], list[float] | None]


def normalize(vector: list[float]) -> list[float]:
    norm = math.sqrt(sum(v * v for v in vector))
    if norm <= 0:
        return vector
    return [v / norm for v in vector]


def _numbers(value: Any) -> list[float] | None:
    if not isinstance(value, list) or not value:
        return None
    out = []
    for item in value:
        if isinstance(item, bool) or not isinstance(item, int | float) or not math.isfinite(item):
            return None
        out.append(float(item))
    return out


def parse_openai(data: Any) -> list[float] | None:
    if not isinstance(data, dict):
        return None
    items = data.get("data")
    if not isinstance(items, list) or not items or not isinstance(items[0], dict):
        return None
    return _numbers(items[0].get("embedding"))


def parse_gemini(data: Any) -> list[float] | None:
    if not isinstance(data, dict):
        return None
    single = data.get("embedding")
    if isinstance(single, dict):
        values = _numbers(single.get("values"))
        if values:
            return values
    batch = data.get("embeddings")
    if isinstance(batch, list) and batch and isinstance(batch[0], dict):
        return _numbers(batch[0].get("values"))
    return None


def _openai_call(text: str, request: EmbeddingRequest, cwd: Path | None) -> _ProviderCall:
    api_key = secrets.resolve("OPENAI_API_KEY", cwd=cwd)
    return _ProviderCall(
        endpoint=os.environ.get("OPENAI_API_BASE", "").strip() or OPENAI_ENDPOINT,
        api_key=api_key,
        headers={"Authorization": f"Bearer {api_key or ''}"},
        body={"model": request.model, "input": text, "dimensions": request.dimensions},
        parse=parse_openai,
    )


def _gemini_call(text: str, request: EmbeddingRequest, cwd: Path | None) -> _ProviderCall:
    api_key = secrets.resolve(
        "GEMINI_API_KEY", "GOOGLE_API_KEY", "GOOGLE_GENERATIVE_AI_API_KEY", cwd=cwd
    )
    base = (
        os.environ.get("GEMINI_API_BASE", "").strip()
        or os.environ.get("GOOGLE_API_BASE", "").strip()
        or GEMINI_BASE
    ).rstrip("/")
    model = request.model if request.model.startswith("models/") else f"models/{request.model}"
    body: dict[str, Any] = {
        "model": model,
        "content": {"parts": [{"text": text}]},
        "outputDimensionality": request.dimensions,
    }
    if request.task_type:
        body["taskType"] = request.task_type.value
    return _ProviderCall(
        endpoint=f"{base}/{model}:embedContent",
        api_key=api_key,
        headers={"x-goog-api-key": api_key or ""},
        body=body,
        parse=parse_gemini,
    )


def embed(
    text: str,
    request: EmbeddingRequest,
    transport: httpx.BaseTransport | None = None,
    cwd: Path | None = None,
) -> EmbeddingResult:
    """Embed `text` and return a unit-length vector.

    Args:
        text: Content to embed.
        request: Provider, model, output dimensions, timeout and task type.
        transport: Optional httpx transport (tests pass httpx.MockTransport).
        cwd: Directory searched for local secret files.

    Returns:
        EmbeddingResult. On failure `vector` is empty and `error` says why.
    """
    provider = request.provider.lower()
    if provider == "openai":
        call = _openai_call(text, request, cwd)
    elif provider in ("google", "gemini"):
        call = _gemini_call(text, request, cwd)
    else:
        return EmbeddingResult(error=f"Unsupported embedding provider: {request.provider}")

    if not call.api_key:
        return EmbeddingResult(error=f"{request.provider.upper()} API key missing")

    timeout = max(1, request.timeout_ms) / 1000
    try:
        with httpx.Client(timeout=timeout, transport=transport) as client:
            response = client.post(call.endpoint, json=call.body, headers=call.headers)
    except httpx.TimeoutException:
        return EmbeddingResult(error=f"Embedding request timed out after {request.timeout_ms}ms")
    except httpx.HTTPError as e:
        return EmbeddingResult(error=f"Embedding request failed: {e}")

    if response.status_code >= 300:
        detail = response.text.strip() or response.reason_phrase
        return EmbeddingResult(
            error=f"Embedding request failed ({response.status_code}): {detail[:500]}"
        )

    try:
        data = response.json()
    except ValueError:
        data = None
    vector = call.parse(data)
    if not vector:
        return EmbeddingResult(error="Embedding response missing vector data")
    return EmbeddingResult(vector=normalize(vector), ok=True)
