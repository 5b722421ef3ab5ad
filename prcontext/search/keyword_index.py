from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence
import json
import re

import numpy as np
from rank_bm25 import BM25Okapi

from ..config import settings
from ..types import CodeChunk, IndexedChunk, KeywordHit
from ..utils.logger import app_logger


_WORD_RE = re.compile(r"[A-Za-z0-9_.]+")
_PART_RE = re.compile(r"[A-Z]+(?=[A-Z][a-z])|[A-Z]?[a-z]+|[A-Z]+|\d+")

FUNCTION_NAME_BOOST = 2


def tokenize(text: str) -> List[str]:
    """Lowercased identifier tokens.

    Whole identifiers are kept and, when they are compound, their camelCase /
    snake_case / dotted parts are added as well, so ``getUserName`` matches a
    query for ``user``.
    """
    tokens = []
    for word in _WORD_RE.findall(text or ""):
        word = word.strip("._")
        if not word:
            continue
        tokens.append(word.lower())
        parts = [part.lower() for piece in re.split(r"[._]+", word) for part in _PART_RE.findall(piece)]
        if len(parts) > 1:
            tokens.extend(parts)

    # Remove very short tokens
    return [token for token in tokens if len(token) > 1]


def document_tokens(chunk: IndexedChunk) -> List[str]:
    tokens = tokenize(chunk.text)
    if chunk.function_name:
        tokens.extend(tokenize(chunk.function_name) * FUNCTION_NAME_BOOST)
    tokens.extend(tokenize(chunk.file_path))
    return tokens


class KeywordIndex:
    """BM25 keyword index over chunk text, function name and path.

    ``build_index`` replaces the whole index; there is no incremental update.
    """

    def __init__(self, k1: Optional[float] = None, b: Optional[float] = None):
        self.logger = app_logger.bind(component="keyword_index")
        self.k1 = k1 if k1 is not None else settings.bm25_k1
        self.b = b if b is not None else settings.bm25_b
        self.documents: Dict[str, IndexedChunk] = {}
        self._ids: List[str] = []
        self.bm25: Optional[BM25Okapi] = None

    def build_index(self, chunks: Sequence[Any]) -> int:
        """Index ``chunks`` (CodeChunk or IndexedChunk), discarding any prior index."""
        documents: Dict[str, IndexedChunk] = {}
        for chunk in chunks or []:
            indexed = chunk.to_indexed() if isinstance(chunk, CodeChunk) else chunk
            documents[indexed.id] = indexed

        ids = list(documents)
        corpus = [document_tokens(documents[i]) for i in ids]

        bm25 = None
        if corpus and any(corpus):
            bm25 = BM25Okapi(corpus, k1=self.k1, b=self.b)

        self.documents, self._ids, self.bm25 = documents, ids, bm25
        self.logger.info(f"Built keyword index with {len(ids)} documents")
        return len(ids)

    def search(self, query: str, k: int = 10) -> List[KeywordHit]:
        """Up to ``k`` documents containing a query token, best BM25 score first.

        Scores only order the matches; in a one- or two-document corpus
        BM25Okapi scores a matching document at zero or below.
        """
        bm25, ids, documents = self.bm25, self._ids, self.documents
        if bm25 is None or k <= 0:
            return []

        query_tokens = tokenize(query)
        if not query_tokens:
            return []

        matched = np.array([
            idx for idx, doc_freqs in enumerate(bm25.doc_freqs)
            if any(token in doc_freqs for token in query_tokens)
        ], dtype=int)
        if matched.size == 0:
            return []

        scores = bm25.get_scores(query_tokens)
        top_indices = matched[np.argsort(-scores[matched], kind="stable")][:k]

        hits = []
        for idx in top_indices:
            score = float(scores[idx])
            doc = documents[ids[idx]]
            hits.append(KeywordHit(
                id=doc.id,
                text=doc.text,
                file_path=doc.file_path,
                function_name=doc.function_name,
                start_line=doc.start_line,
                end_line=doc.end_line,
                score=score,
            ))
        return hits

    def get_document(self, chunk_id: str) -> Optional[IndexedChunk]:
        return self.documents.get(chunk_id)

    def save(self, path: str):
        target = Path(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        with open(target, "w", encoding="utf-8") as f:
            json.dump([doc.to_dict() for doc in self.documents.values()], f, ensure_ascii=False)
        self.logger.debug(f"Saved {len(self.documents)} keyword documents to {target}")

    def load(self, path: str) -> int:
        with open(path, "r", encoding="utf-8") as f:
            records = json.load(f)
        return self.build_index([IndexedChunk(**record) for record in records])

    def get_stats(self) -> Dict[str, Any]:
        """Get BM25 statistics."""
        vocabulary = set()
        if self.bm25 is not None:
            for doc_freqs in self.bm25.doc_freqs:
                vocabulary.update(doc_freqs)
        return {
            "indexed_documents": len(self.documents),
            "vocabulary_size": len(vocabulary),
            "k1": self.k1,
            "b": self.b,
        }
