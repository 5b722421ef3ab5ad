import pytest
import asyncio
import sys
from pathlib import Path

import numpy as np

# Add project root to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from prcontext.embedding.embedding_service import EmbeddingService, HashEmbeddingProvider
from prcontext.query.vector_store import InMemoryVectorIndex, chunk_metadata, create_vector_index
from prcontext.types import CodeChunk


def make_chunk(chunk_id: str, text: str, function_name: str) -> CodeChunk:
    return CodeChunk(
        id=chunk_id,
        text=text,
        context=f"File: src/{function_name}.py\nLanguage: python",
        file_path=f"src/{function_name}.py",
        start_line=1,
        end_line=3,
        language="python",
        metadata={"function_name": function_name, "call_count": 1, "incoming_count": 0},
    )


@pytest.fixture
def chunks():
    return [
        make_chunk("c1", "def send_invoice(order):\n    mailer.deliver(order.invoice)", "send_invoice"),
        make_chunk("c2", "def render_page(view):\n    return template.render(view)", "render_page"),
        make_chunk("c3", "def open_socket(url):\n    return network.connect(url)", "open_socket"),
    ]


class TestHashEmbeddingProvider:
    """Test the offline embedding provider."""

    def test_deterministic_and_normalized(self):
        provider = HashEmbeddingProvider(dimension=64)

        first = provider.embed_sync("def compute_total(items)")
        second = provider.embed_sync("def compute_total(items)")

        assert first == second
        assert len(first) == 64
        assert np.linalg.norm(first) == pytest.approx(1.0, abs=1e-5)

    def test_empty_text_is_zero_vector(self):
        assert HashEmbeddingProvider(dimension=8).embed_sync("") == [0.0] * 8


class TestEmbeddingService:
    """Test provider selection and chunk embedding."""

    def test_unknown_provider_rejected(self):
        with pytest.raises(ValueError):
            EmbeddingService(provider_name="nope")

    def test_embed_chunks_uses_enriched_text(self, embedding_service, chunks):
        asyncio.run(embedding_service.embed_chunks(chunks))

        expected = embedding_service.provider.embed_sync(chunks[0].enriched_text)
        assert chunks[0].embedding == expected
        assert embedding_service.get_dimension() == 256


class TestInMemoryVectorIndex:
    """Test the in-process vector index."""

    def test_nearest_chunk_first(self, embedding_service, chunks):
        index = InMemoryVectorIndex(embedding_service)
        asyncio.run(index.upsert(chunks))

        hits = asyncio.run(index.query(chunks[1].enriched_text, k=2))

        assert len(hits) == 2
        assert hits[0].metadata["id"] == "c2"
        assert hits[0].text == chunks[1].text
        assert hits[0].distance == pytest.approx(0.0, abs=1e-5)

    def test_upsert_overwrites_by_id(self, embedding_service, chunks):
        index = InMemoryVectorIndex(embedding_service)
        asyncio.run(index.upsert(chunks))
        replacement = make_chunk("c1", "def send_invoice(order):\n    return None", "send_invoice")
        asyncio.run(index.upsert([replacement]))

        assert index.get_stats()["documents"] == 3
        assert index.documents["c1"]["text"] == replacement.text

    def test_empty_index_returns_nothing(self, embedding_service):
        index = InMemoryVectorIndex(embedding_service)

        assert asyncio.run(index.query("anything", k=5)) == []
        assert asyncio.run(index.upsert([])) == 0

    def test_save_and_load(self, embedding_service, chunks, tmp_path):
        index = InMemoryVectorIndex(embedding_service)
        asyncio.run(index.upsert(chunks))
        path = tmp_path / "vectors.json"
        index.save(str(path))

        restored = InMemoryVectorIndex(embedding_service)
        assert restored.load(str(path)) == 3
        hits = asyncio.run(restored.query(chunks[2].enriched_text, k=1))
        assert hits[0].metadata["id"] == "c3"

    def test_metadata_shape(self, chunks):
        metadata = chunk_metadata(chunks[0])

        assert metadata["id"] == "c1"
        assert metadata["function_name"] == "send_invoice"
        assert metadata["context"] == chunks[0].context
        assert metadata["call_count"] == 1


class TestVectorIndexFactory:
    def test_memory_backend(self, embedding_service):
        assert isinstance(create_vector_index("memory", embedding_service), InMemoryVectorIndex)

    def test_unknown_backend(self, embedding_service):
        with pytest.raises(ValueError):
            create_vector_index("bogus", embedding_service)
