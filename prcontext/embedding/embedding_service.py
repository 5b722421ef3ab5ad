from typing import List, Optional
import asyncio
import hashlib
import re

import numpy as np
import requests
from openai import OpenAI

from ..config import settings
from ..utils.logger import app_logger


_TOKEN_RE = re.compile(r"[A-Za-z_][A-Za-z0-9_]*|\d+")


class HashEmbeddingProvider:
    """Deterministic token-hashing embeddings.

    No model and no network: tokens are hashed into a fixed number of signed
    buckets and the vector is L2-normalised. Gives keyword-level similarity
    only; used as the offline default and in tests.
    """

    def __init__(self, dimension: int = 256):
        self.dimension = dimension
        self.logger = app_logger.bind(component="hash_embedding")

    def embed_sync(self, text: str) -> List[float]:
        vector = np.zeros(self.dimension, dtype=np.float32)
        for token in _TOKEN_RE.findall(text.lower()):
            digest = hashlib.blake2b(token.encode("utf-8"), digest_size=8).digest()
            index = int.from_bytes(digest[:4], "big") % self.dimension
            vector[index] += 1.0 if (digest[4] & 1) == 0 else -1.0

        norm = np.linalg.norm(vector)
        if norm > 0:
            vector /= norm
        return vector.tolist()

    async def embed_text(self, text: str) -> List[float]:
        return self.embed_sync(text)

    async def embed_texts(self, texts: List[str]) -> List[List[float]]:
        return [self.embed_sync(text) for text in texts]

    def get_dimension(self) -> int:
        return self.dimension


class OllamaEmbeddingProvider:
    """Ollama embedding provider."""

    def __init__(self, host: str = "http://localhost:11434", model: str = "nomic-embed-text",
                 dimension: int = 768, timeout: float = 10.0):
        self.host = host
        self.model = model
        self.timeout = timeout
        self.logger = app_logger.bind(component="ollama_embedding")
        self.dimension = dimension
        self.session = requests.Session()

    async def embed_text(self, text: str) -> List[float]:
        """Generate embedding for a single text using Ollama."""
        try:
            response = await asyncio.get_event_loop().run_in_executor(
                None,
                lambda: self.session.post(
                    f"{self.host}/api/embeddings",
                    json={
                        "model": self.model,
                        "prompt": text
                    },
                    timeout=self.timeout,
                )
            )
            response.raise_for_status()
            return response.json()["embedding"]
        except requests.RequestException as e:
            self.logger.error(f"Error generating Ollama embedding: {e}")
            raise

    async def embed_texts(self, texts: List[str]) -> List[List[float]]:
        """Generate embeddings for multiple texts using Ollama."""
        embeddings = []
        for text in texts:
            embeddings.append(await self.embed_text(text))
        return embeddings

    def get_dimension(self) -> int:
        """Get the dimension of embeddings."""
        return self.dimension


class OpenAIEmbeddingProvider:
    """OpenAI embedding provider."""

    def __init__(self, api_key: str, model: str = "text-embedding-3-small", dimension: int = 1536):
        self.client = OpenAI(api_key=api_key)
        self.model = model
        self.logger = app_logger.bind(component="openai_embedding")
        self.dimension = dimension

    async def embed_text(self, text: str) -> List[float]:
        """Generate embedding for a single text."""
        embeddings = await self.embed_texts([text])
        return embeddings[0]

    async def embed_texts(self, texts: List[str]) -> List[List[float]]:
        """Generate embeddings for multiple texts."""
        try:
            response = await asyncio.get_event_loop().run_in_executor(
                None,
                lambda: self.client.embeddings.create(
                    model=self.model,
                    input=texts
                )
            )
            return [data.embedding for data in response.data]
        except Exception as e:
            self.logger.error(f"Error generating OpenAI embeddings: {e}")
            raise

    def get_dimension(self) -> int:
        """Get the dimension of embeddings."""
        return self.dimension


class EmbeddingService:
    """Embeds chunks and queries with the configured provider."""

    def __init__(self, provider=None, provider_name: Optional[str] = None):
        self.logger = app_logger.bind(component="embedding_service")
        self.provider = provider or self._initialize_provider(provider_name or settings.embedding_provider)
        self.dimension = self.provider.get_dimension()

    def _initialize_provider(self, provider_name: str):
        """Initialize the embedding provider based on configuration."""
        if provider_name == "hash":
            return HashEmbeddingProvider(dimension=settings.hash_embedding_dimension)
        elif provider_name == "ollama":
            return OllamaEmbeddingProvider(
                host=settings.ollama_host,
                model=settings.ollama_model,
                dimension=settings.ollama_dimension,
                timeout=settings.vector_query_timeout,
            )
        elif provider_name == "openai":
            if not settings.openai_api_key:
                raise ValueError("OpenAI API key is required for OpenAI embeddings")
            return OpenAIEmbeddingProvider(
                api_key=settings.openai_api_key,
                model=settings.openai_model,
                dimension=settings.openai_dimension,
            )
        else:
            raise ValueError(f"Unsupported embedding provider: {provider_name}")

    async def embed_texts(self, texts: List[str]) -> List[List[float]]:
        """Generate embeddings for multiple texts."""
        return await self.provider.embed_texts(texts)

    async def embed_chunks(self, chunks) -> List:
        """Embed the context-enriched text of each chunk and attach the vectors."""
        if not chunks:
            return []

        embeddings = await self.embed_texts([chunk.enriched_text for chunk in chunks])

        for chunk, embedding in zip(chunks, embeddings):
            chunk.embedding = embedding

        self.logger.debug(f"Embedded {len(chunks)} chunks")
        return chunks

    def get_dimension(self) -> int:
        """Get the dimension of embeddings."""
        return self.dimension

    async def embed_query(self, query: str) -> List[float]:
        """Generate embedding for a search query."""
        return await self.provider.embed_text(query)
