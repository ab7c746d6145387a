"""
retriever.py — TaxRetriever: dense FAISS retrieval over the ingested PDF corpus.

Loaded ONCE at FastAPI startup (lifespan event) and handed to the orchestrator.
If the indexes are not found, raises FileNotFoundError — caller in main.py
catches this and runs without a retriever; every request then degrades to
"no excerpts available" instead of failing.

Retrieval strategy:
  - Embed:  sentence-transformers, normalize_embeddings=True (unit vectors)
  - Index:  FAISS IndexFlatIP — inner product on unit vectors = cosine similarity
  - Output: cosine distance (1 - similarity), ascending — nearest first
"""
import logging
import pickle
from pathlib import Path
from typing import Any, Optional

import faiss
import numpy as np
from sentence_transformers import SentenceTransformer

from taxexplainer.agents.matcher_agent.schemas import ChunkMetadata, RetrievedChunk

logger = logging.getLogger(__name__)

FAISS_FILENAME = "kb.faiss"
CHUNKS_FILENAME = "chunks.pkl"


class TaxRetriever:
    """
    Nearest-neighbour retriever for the tax document corpus.

    Attributes:
        index:  FAISS IndexFlatIP loaded from kb.faiss
        chunks: List of chunk dicts from chunks.pkl (row i ↔ FAISS vector i)
        model:  embedder for queries (same model as build_index.py)

    Stateless after construction — safe to share across requests.
    """

    def __init__(
        self,
        index_dir: Path,
        model_name: str,
        model: Optional[Any] = None,
    ) -> None:
        index_dir = Path(index_dir)
        faiss_path = index_dir / FAISS_FILENAME
        chunks_path = index_dir / CHUNKS_FILENAME

        # --- FAISS dense index ---
        if not faiss_path.exists():
            raise FileNotFoundError(
                f"FAISS index not found at {faiss_path}. "
                "Run: python -m taxexplainer.agents.matcher_agent.build_index"
            )
        logger.info("Loading FAISS index from %s", faiss_path)
        self.index: faiss.IndexFlatIP = faiss.read_index(str(faiss_path))

        # --- Chunks (metadata + text) ---
        if not chunks_path.exists():
            raise FileNotFoundError(
                f"Chunks file not found at {chunks_path}. "
                "Run: python -m taxexplainer.agents.matcher_agent.build_index"
            )
        with open(chunks_path, "rb") as f:
            self.chunks: list[dict] = pickle.load(f)
        logger.info(
            "FAISS index loaded: %d vectors, d=%d, chunks=%d",
            self.index.ntotal, self.index.d, len(self.chunks),
        )

        # --- Embedding model (dimension must match FAISS) ---
        if model is None:
            logger.info("Loading embedding model: %s", model_name)
            model = SentenceTransformer(model_name)
        self.model = model
        embed_dim = self.model.get_sentence_embedding_dimension()
        assert embed_dim == self.index.d, (
            f"Embedding model dimension mismatch: model produces {embed_dim}-dim vectors "
            f"but FAISS index expects {self.index.d}-dim. "
            "Ensure the retriever uses the same model as build_index.py."
        )

    def embed(self, text: str) -> np.ndarray:
        """Unit-length float32 vector for *text*."""
        embedding = self.model.encode(
            [text],
            normalize_embeddings=True,
            show_progress_bar=False,
        )
        return np.asarray(embedding, dtype=np.float32)[0]

    def query(self, vector: np.ndarray, k: int = 5) -> list[RetrievedChunk]:
        """
        k nearest chunks to *vector*, ascending by cosine distance.
        FAISS pads with -1 when the index holds fewer than k vectors.
        """
        query_np = np.asarray(vector, dtype=np.float32).reshape(1, -1)
        scores, indices = self.index.search(query_np, k)
        results: list[RetrievedChunk] = []
        for idx, score in zip(indices[0], scores[0]):
            if idx < 0:
                continue
            chunk = self.chunks[int(idx)]
            results.append(
                RetrievedChunk(
                    text=chunk["text"],
                    metadata=ChunkMetadata(**chunk),
                    distance=round(1.0 - float(score), 6),
                )
            )
        return results

    def search(self, text: str, k: int = 5) -> list[RetrievedChunk]:
        """embed() + query() in one call — what the orchestrator uses."""
        return self.query(self.embed(text), k)
