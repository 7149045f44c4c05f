"""
Embedding Backends

A backend performs exactly one kind of network call: turn a batch of texts
into vectors using one provider's OpenAI-compatible ``/embeddings`` endpoint
(Mistral, OpenAI, and most hosted gateways speak this format). It is
responsible for:

- Efficient batching of text inputs
- Transport error isolation and classification
- Strict response validation

Timeouts, retries and failover live one layer up, in ``EmbeddingClient`` and
``EmbeddingProviderManager``. Backends are stateless and safe to reuse.
"""

from __future__ import annotations

import logging
from typing import List, Optional, Protocol, Sequence

import httpx

from ..core.errors import BackendUnavailableError, classify_provider_error

logger = logging.getLogger("rag.embedder")


class EmbeddingError(BackendUnavailableError):
    """Raised when a provider returns a malformed embedding payload."""


class EmbeddingBackend(Protocol):
    """One embedding provider."""

    name: str
    model: str

    async def embed(self, texts: Sequence[str]) -> List[List[float]]:
        ...


class HttpEmbeddingBackend:
    """
    Asynchronous embedding generator for an OpenAI-compatible endpoint.

    This class performs no caching and no retries.
    """

    def __init__(
        self,
        name: str,
        api_key: str,
        model: str,
        base_url: str,
        batch_size: int = 20,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        """
        Initialize a backend.

        Parameters
        ----------
        name : str
            Provider label used in logs and errors (e.g. "mistral").

        api_key : str
            Bearer token for the provider.

        model : str
            Embedding model identifier.

        base_url : str
            Base URL of the provider API; ``/embeddings`` is appended.

        batch_size : int
            Maximum batch size per request. Helps avoid API token/size limits.

        transport : Optional[httpx.AsyncBaseTransport]
            Custom transport, used by tests to avoid real network calls.
        """
        self.name = name
        self.model = model
        self.url = base_url.rstrip("/") + "/embeddings"
        self.batch_size = batch_size
        self._api_key = api_key
        self._transport = transport

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def embed(self, texts: Sequence[str]) -> List[List[float]]:
        """
        Generate embeddings for a sequence of input texts.

        Returns
        -------
        List[List[float]]
            One vector per input text, in input order.

        Raises
        ------
        ProviderError
            A classified error if any batch fails or the response is malformed.
        """
        if not texts:
            return []

        all_embeddings: List[List[float]] = []
        headers = {"Authorization": f"Bearer {self._api_key}"}

        # No client-side timeout: the caller races the whole call.
        async with httpx.AsyncClient(timeout=None, transport=self._transport) as client:
            for start in range(0, len(texts), self.batch_size):
                batch = list(texts[start : start + self.batch_size])
                payload = {
                    "model": self.model,
                    "input": batch,
                }

                try:
                    response = await client.post(
                        self.url,
                        json=payload,
                        headers=headers,
                    )
                    response.raise_for_status()
                except httpx.HTTPError as exc:
                    logger.error(
                        "%s embedding request failed (%s): batch size=%d, error=%s",
                        self.name,
                        type(exc).__name__,
                        len(batch),
                        str(exc),
                    )
                    raise classify_provider_error(exc, self.name, self.model) from exc

                embeddings = self._extract_embeddings(response.json())
                if len(embeddings) != len(batch):
                    raise EmbeddingError(
                        f"{self.name} returned {len(embeddings)} embeddings "
                        f"for {len(batch)} inputs.",
                        self.name,
                    )
                all_embeddings.extend(embeddings)

        return all_embeddings

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _extract_embeddings(self, data: dict) -> List[List[float]]:
        """
        Parse and validate embedding output format.

        Providers return:
            { "data": [ {"embedding": [...]}, ... ] }
        """
        if "data" not in data:
            raise EmbeddingError("Embedding response missing 'data' field.", self.name)

        records = data["data"]
        if not isinstance(records, list):
            raise EmbeddingError("'data' field must be a list.", self.name)

        embeddings: List[List[float]] = []

        for index, record in enumerate(records):
            if not isinstance(record, dict) or "embedding" not in record:
                raise EmbeddingError(
                    f"Malformed embedding record at index {index}: {record!r}",
                    self.name,
                )

            emb = record["embedding"]
            if not isinstance(emb, list) or not all(
                isinstance(x, (float, int)) for x in emb
            ):
                raise EmbeddingError(
                    f"Invalid embedding vector at index {index}: must be float list.",
                    self.name,
                )

            embeddings.append([float(x) for x in emb])

        return embeddings
