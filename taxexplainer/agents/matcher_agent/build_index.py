"""
build_index.py — PDF Knowledge Base Ingestion Pipeline
=====================================================
Reads every PDF in the source directory, extracts text page by page with
pdfplumber, splits it into overlapping character windows (2000 chars,
200-char overlap), embeds each window with sentence-transformers, builds a
FAISS IndexFlatIP (cosine-similarity ready), and serialises chunk metadata
as chunks.pkl for retrieval.

Usage (from the project root):
    python -m taxexplainer.agents.matcher_agent.build_index
    python -m taxexplainer.agents.matcher_agent.build_index --dir ./custom_pdfs

Outputs:
    <index_dir>/kb.faiss
    <index_dir>/chunks.pkl
"""

from __future__ import annotations

import argparse
import bisect
import logging
import pickle
import re
import sys
from pathlib import Path
from typing import Any, Optional

import faiss
import numpy as np
import pdfplumber
from sentence_transformers import SentenceTransformer

from taxexplainer.agents.matcher_agent.retriever import CHUNKS_FILENAME, FAISS_FILENAME
from taxexplainer.config import settings

log = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Chunking hyper-parameters (~500 tokens per window)
# ---------------------------------------------------------------------------
CHUNK_SIZE = 2000
CHUNK_OVERLAP = 200
MIN_CHUNK_CHARS = 50

_WHITESPACE = re.compile(r"\s+")


# ---------------------------------------------------------------------------
# PDF text extraction
# ---------------------------------------------------------------------------
def extract_pages(pdf_path: Path) -> list[str]:
    """Whitespace-normalised text of every page, in order. Empty pages stay as ""."""
    pages: list[str] = []
    with pdfplumber.open(pdf_path) as pdf:
        for page in pdf.pages:
            text = page.extract_text() or ""
            pages.append(_WHITESPACE.sub(" ", text).strip())
    return pages


def join_pages(pages: list[str]) -> tuple[str, list[int]]:
    """
    Join non-empty pages with single spaces.

    Returns (full_text, page_starts) where page_starts[i] is the character
    offset at which page i begins in full_text (empty pages share the offset
    of the next non-empty page).
    """
    parts: list[str] = []
    page_starts: list[int] = []
    offset = 0
    for text in pages:
        separator = 1 if parts else 0
        page_starts.append(offset + separator)
        if not text:
            continue
        if separator:
            parts.append(" ")
        parts.append(text)
        offset += separator + len(text)
    return "".join(parts), page_starts


def page_for_offset(page_starts: list[int], offset: int) -> int:
    """1-based page number containing character *offset*."""
    if not page_starts:
        return 1
    return max(1, bisect.bisect_right(page_starts, offset))


# ---------------------------------------------------------------------------
# Overlapping window chunking
# ---------------------------------------------------------------------------
def split_into_chunks(
    text: str,
    chunk_size: int = CHUNK_SIZE,
    overlap: int = CHUNK_OVERLAP,
) -> list[tuple[int, str]]:
    """
    Split *text* into overlapping windows.

    Returns (start_offset, chunk_text) pairs. Windows of MIN_CHUNK_CHARS or
    fewer (after stripping) are dropped, so the tail of a document can vanish.
    """
    if overlap >= chunk_size:
        raise ValueError("overlap must be smaller than chunk_size")
    chunks: list[tuple[int, str]] = []
    start = 0
    while start < len(text):
        end = min(start + chunk_size, len(text))
        chunk = text[start:end].strip()
        if len(chunk) > MIN_CHUNK_CHARS:
            chunks.append((start, chunk))
        if end == len(text):
            break
        start += chunk_size - overlap
    return chunks


def chunk_document(file_name: str, pages: list[str]) -> list[dict[str, Any]]:
    """Chunk one document and attach retrieval metadata to every window."""
    full_text, page_starts = join_pages(pages)
    windows = split_into_chunks(full_text)
    total = len(windows)
    return [
        {
            "chunk_id": f"{file_name}_chunk_{idx}",
            "source_file": file_name,
            "page": page_for_offset(page_starts, start),
            "chunk_index": idx,
            "total_chunks": total,
            "text": chunk_text,
        }
        for idx, (start, chunk_text) in enumerate(windows)
    ]


# ---------------------------------------------------------------------------
# Main pipeline
# ---------------------------------------------------------------------------
def find_pdfs(pdf_dir: Path) -> list[Path]:
    return sorted(p for p in pdf_dir.iterdir() if p.is_file() and p.suffix.lower() == ".pdf")


def build_index(
    pdf_dir: Path,
    index_dir: Path,
    model: Optional[Any] = None,
    model_name: str = settings.embed_model,
) -> int:
    """
    Ingest every PDF in *pdf_dir* into a fresh index under *index_dir*.
    Returns the number of chunks written.
    """
    pdf_files = find_pdfs(pdf_dir)
    if not pdf_files:
        raise FileNotFoundError(f"No PDF files found in {pdf_dir}")
    log.info("Found %d PDF(s): %s", len(pdf_files), ", ".join(p.name for p in pdf_files))

    all_chunks: list[dict[str, Any]] = []
    for path in pdf_files:
        pages = extract_pages(path)
        doc_chunks = chunk_document(path.name, pages)
        log.info("  %s → %d page(s), %d chunk(s)", path.name, len(pages), len(doc_chunks))
        all_chunks.extend(doc_chunks)

    if not all_chunks:
        raise ValueError(f"PDFs in {pdf_dir} produced no text chunks")

    chunk_ids = [c["chunk_id"] for c in all_chunks]
    if len(chunk_ids) != len(set(chunk_ids)):
        duplicates = {cid for cid in chunk_ids if chunk_ids.count(cid) > 1}
        raise ValueError(f"Duplicate chunk IDs detected: {sorted(duplicates)}")

    if model is None:
        log.info("Loading model: %s", model_name)
        model = SentenceTransformer(model_name)

    log.info("Embedding %d chunks (this may take a few minutes)...", len(all_chunks))
    embeddings = model.encode(
        [c["text"] for c in all_chunks],
        batch_size=32,
        show_progress_bar=True,
        normalize_embeddings=True,   # L2-normalise for cosine via dot product
        convert_to_numpy=True,
    )
    embeddings = np.asarray(embeddings, dtype=np.float32)

    index = faiss.IndexFlatIP(embeddings.shape[1])
    index.add(embeddings)
    log.info("FAISS index built — %d vectors, dimension %d", index.ntotal, index.d)

    index_dir.mkdir(parents=True, exist_ok=True)
    faiss_path = index_dir / FAISS_FILENAME
    faiss.write_index(index, str(faiss_path))

    pkl_path = index_dir / CHUNKS_FILENAME
    with open(pkl_path, "wb") as fh:
        pickle.dump(all_chunks, fh)
    log.info("Saved %s and %s", faiss_path, pkl_path)
    return len(all_chunks)


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Ingest tax PDFs into the FAISS knowledge base.")
    parser.add_argument("--dir", dest="pdf_dir", default=settings.pdf_dir, help="PDF source directory")
    parser.add_argument("--index-dir", default=settings.index_dir, help="Output directory for kb.faiss + chunks.pkl")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s  %(levelname)-8s  %(message)s",
        datefmt="%H:%M:%S",
    )

    pdf_dir = Path(args.pdf_dir)
    if not pdf_dir.is_dir():
        log.error("PDF directory not found: %s — create it, add PDFs, then re-run.", pdf_dir)
        return 1

    try:
        total = build_index(pdf_dir, Path(args.index_dir))
    except (FileNotFoundError, ValueError) as exc:
        log.error("Ingestion failed: %s", exc)
        return 1

    log.info("✓ Ingestion complete: %d chunks in %s", total, args.index_dir)
    return 0


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------
if __name__ == "__main__":
    sys.exit(main())
