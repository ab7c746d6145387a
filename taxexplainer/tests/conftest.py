"""
Test configuration for Tax Regime Explainer tests.

sys.path is configured so 'from taxexplainer...' resolves without an install,
whether pytest is run from the project root or from taxexplainer/.

Shared doubles:
  keyword_embedder — deterministic 4-dim "embedding" (keyword counts), same
                     interface as SentenceTransformer for encode() / dimension
"""
import sys
from pathlib import Path

import numpy as np
import pytest

_package_dir = Path(__file__).parent.parent       # .../taxexplainer/
_project_root = _package_dir.parent               # project root

if str(_project_root) not in sys.path:
    sys.path.insert(0, str(_project_root))


class KeywordEmbedder:
    """Bag-of-keywords vectors — enough to make nearest-neighbour order predictable."""

    KEYWORDS = ("80c", "80d", "regime", "rebate")

    def get_sentence_embedding_dimension(self) -> int:
        return len(self.KEYWORDS)

    def encode(self, texts, normalize_embeddings=True, **kwargs):
        rows = []
        for text in texts:
            lower = text.lower()
            vec = np.array([lower.count(k) for k in self.KEYWORDS], dtype=np.float32) + 0.01
            if normalize_embeddings:
                vec = vec / np.linalg.norm(vec)
            rows.append(vec)
        return np.vstack(rows)


@pytest.fixture
def keyword_embedder() -> KeywordEmbedder:
    return KeywordEmbedder()
