"""Embedding providers: a local sentence-transformers model or the DashScope HTTP API.

Providers never raise for provider-side failures. They return a result with
success=False and an error message, so callers can tell "failed" apart from
"empty".
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable

import httpx

logger = logging.getLogger(__name__)


@dataclass
class EmbeddingResult:
    success: bool
    vector: list[float] = field(default_factory=list)
    model: str = ""
    error: str | None = None


@dataclass
class BatchEmbeddingResult:
    success: bool
    vectors: list[list[float]] = field(default_factory=list)
    model: str = ""
    error: str | None = None


class EmbeddingProvider(ABC):
    """Text in, fixed-length vector out."""

    model_name: str = "unknown"

    def __init__(self, max_text_length: int = 2048, timeout: float = 30, batch_timeout: float = 60):
        self.max_text_length = max_text_length
        self.timeout = timeout
        self.batch_timeout = batch_timeout

    def prepare(self, text: str) -> str:
        """Trim and truncate text the way every provider sends it."""
        return (text or "").strip()[: self.max_text_length]

    @abstractmethod
    async def embed(self, text: str) -> EmbeddingResult:
        """Embed a single text."""

    @abstractmethod
    async def embed_batch(self, texts: list[str]) -> BatchEmbeddingResult:
        """Embed several texts in one call; vectors align with texts."""

    async def close(self) -> None:
        """Release network resources."""


class SentenceTransformerProvider(EmbeddingProvider):
    """Embeds notes with a local sentence-transformers model."""

    def __init__(self, model_name: str = "intfloat/e5-large-v2", **kwargs):
        super().__init__(**kwargs)
        self.model_name = model_name
        self._model = None

    @property
    def model(self):
        """Lazy-load the embedding model."""
        if self._model is None:
            from sentence_transformers import SentenceTransformer
            self._model = SentenceTransformer(self.model_name)
        return self._model

    def _passages(self, texts: list[str]) -> list[str]:
        # e5 models need "passage: " prefix for documents
        if "e5" in self.model_name:
            return [f"passage: {t}" for t in texts]
        return texts

    async def _encode(self, texts: list[str], timeout: float) -> list[list[float]]:
        vectors = await asyncio.wait_for(
            asyncio.to_thread(self.model.encode, self._passages(texts)),
            timeout=timeout,
        )
        return vectors.tolist()

    async def embed(self, text: str) -> EmbeddingResult:
        text = self.prepare(text)
        if not text:
            return EmbeddingResult(success=False, error="text is empty")
        try:
            vectors = await self._encode([text], self.timeout)
        except asyncio.TimeoutError:
            return EmbeddingResult(success=False, error="request timed out")
        except Exception as e:
            logger.error("Embedding failed: %s", e)
            return EmbeddingResult(success=False, error=str(e))
        return EmbeddingResult(success=True, vector=vectors[0], model=self.model_name)

    async def embed_batch(self, texts: list[str]) -> BatchEmbeddingResult:
        prepared = [self.prepare(t) for t in texts]
        if not prepared or not all(prepared):
            return BatchEmbeddingResult(success=False, error="batch contains empty text")
        try:
            vectors = await self._encode(prepared, self.batch_timeout)
        except asyncio.TimeoutError:
            return BatchEmbeddingResult(success=False, error="request timed out")
        except Exception as e:
            logger.error("Batch embedding failed: %s", e)
            return BatchEmbeddingResult(success=False, error=str(e))
        return BatchEmbeddingResult(success=True, vectors=vectors, model=self.model_name)


class DashScopeProvider(EmbeddingProvider):
    """Embeds notes through the DashScope text-embedding HTTP API."""

    def __init__(
        self,
        api_key: str,
        base_url: str,
        model_name: str = "text-embedding-v3",
        client: httpx.AsyncClient | None = None,
        **kwargs,
    ):
        super().__init__(**kwargs)
        if not api_key:
            raise ValueError("DashScope API key required. Set DASHSCOPE_API_KEY or dashscope.api_key in config.")
        self.model_name = model_name
        self.base_url = base_url
        self.client = client or httpx.AsyncClient(
            headers={"Authorization": f"Bearer {api_key}"},
        )

    async def _post(self, texts: list[str], timeout: float) -> list[list[float]]:
        """POST texts and return their vectors; raises RuntimeError on API errors."""
        response = await self.client.post(
            self.base_url,
            json={
                "model": self.model_name,
                "input": {"texts": texts},
                "parameters": {"text_type": "document"},
            },
            timeout=timeout,
        )
        if response.status_code != 200:
            raise RuntimeError(f"API request failed: {response.status_code}")

        data = response.json()
        if data.get("code"):
            raise RuntimeError(f"API error: {data['code']}")

        embeddings = (data.get("output") or {}).get("embeddings") or []
        # The API tags each vector with the position of its input text.
        embeddings = sorted(embeddings, key=lambda e: e.get("text_index", 0))
        vectors = [e.get("embedding") for e in embeddings]
        if len(vectors) != len(texts) or not all(isinstance(v, list) and v for v in vectors):
            raise RuntimeError("invalid embedding response")
        return vectors

    async def embed(self, text: str) -> EmbeddingResult:
        text = self.prepare(text)
        if not text:
            return EmbeddingResult(success=False, error="text is empty")
        try:
            vectors = await self._post([text], self.timeout)
        except httpx.TimeoutException:
            return EmbeddingResult(success=False, error="request timed out")
        except (httpx.HTTPError, RuntimeError, ValueError) as e:
            logger.error("Embedding failed: %s", e)
            return EmbeddingResult(success=False, error=str(e))
        return EmbeddingResult(success=True, vector=vectors[0], model=self.model_name)

    async def embed_batch(self, texts: list[str]) -> BatchEmbeddingResult:
        prepared = [self.prepare(t) for t in texts]
        if not prepared or not all(prepared):
            return BatchEmbeddingResult(success=False, error="batch contains empty text")
        try:
            vectors = await self._post(prepared, self.batch_timeout)
        except httpx.TimeoutException:
            return BatchEmbeddingResult(success=False, error="request timed out")
        except (httpx.HTTPError, RuntimeError, ValueError) as e:
            return BatchEmbeddingResult(success=False, error=str(e))
        return BatchEmbeddingResult(success=True, vectors=vectors, model=self.model_name)

    async def close(self) -> None:
        await self.client.aclose()


async def embed_in_batches(
    provider: EmbeddingProvider,
    texts: list[str],
    batch_size: int = 20,
    fallback_delay: float = 0.05,
    batch_delay: float = 0.2,
    on_batch: Callable[[int, int], Any] | None = None,
) -> list[EmbeddingResult]:
    """Embed texts batch by batch, one result per text in input order.

    A failed batch call falls back to one call per text so that a single bad
    text cannot sink its whole batch. on_batch(completed, total) fires after
    every batch.
    """
    results: list[EmbeddingResult] = []
    total = len(texts)

    for start in range(0, total, batch_size):
        batch = texts[start:start + batch_size]
        batch_result = await provider.embed_batch(batch)

        if batch_result.success:
            results.extend(
                EmbeddingResult(success=True, vector=v, model=batch_result.model)
                for v in batch_result.vectors
            )
        else:
            logger.warning(
                "Batch embedding of texts %d-%d failed (%s), retrying one by one",
                start, start + len(batch) - 1, batch_result.error,
            )
            for text in batch:
                results.append(await provider.embed(text))
                await asyncio.sleep(fallback_delay)

        if on_batch:
            on_batch(min(start + batch_size, total), total)

        if start + batch_size < total:
            await asyncio.sleep(batch_delay)

    return results


def get_embedding_provider(config: dict[str, Any]) -> EmbeddingProvider:
    """Factory: return the configured embedding provider."""
    name = config.get("embedding_provider", "sentence_transformers")
    emb_cfg = config.get("embedding", {})
    limits = {
        "max_text_length": emb_cfg.get("max_text_length", 2048),
        "timeout": emb_cfg.get("timeout", 30),
        "batch_timeout": emb_cfg.get("batch_timeout", 60),
    }

    if name == "sentence_transformers":
        return SentenceTransformerProvider(config.get("embedding_model", "intfloat/e5-large-v2"), **limits)
    elif name == "dashscope":
        ds_cfg = config.get("dashscope", {})
        return DashScopeProvider(
            api_key=ds_cfg.get("api_key", ""),
            base_url=ds_cfg["base_url"],
            model_name=ds_cfg.get("model", "text-embedding-v3"),
            **limits,
        )
    else:
        raise ValueError(f"Unknown embedding_provider: {name}")
