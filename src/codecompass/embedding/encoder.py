"""Local sentence-transformers embedding backend for offline use."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Literal

import numpy as np

from codecompass.embedding.base import EmbeddingProvider
from codecompass.exceptions import EmbeddingError
from codecompass.utils.text import truncate

DEFAULT_MODEL = "sentence-transformers/all-mpnet-base-v2"
MAX_EMBED_CHARS = 8_000

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class EmbeddingConfig:
    model_name: str = DEFAULT_MODEL
    normalize: bool = True
    backend: Literal["torch", "onnx", "openvino"] = "torch"
    device: str | None = None


class LocalEmbeddingProvider(EmbeddingProvider):
    """Thin wrapper around `SentenceTransformer` satisfying the embedding capability set.

    The model is loaded on first use so that configuring the local backend
    costs nothing until an embedding is actually requested.
    """

    name = "local"

    def __init__(self, config: EmbeddingConfig | None = None) -> None:
        self.config = config or EmbeddingConfig()
        self._model = None

    def _load_model(self):
        if self._model is None:
            try:
                from sentence_transformers import SentenceTransformer
            except ImportError as exc:
                raise EmbeddingError(
                    "sentence-transformers is not installed. "
                    "Install the local extras with \"python -m pip install '.[local]'\""
                ) from exc

            logger.info(f"Loading {self.config.model_name} with backend: {self.config.backend}")
            self._model = SentenceTransformer(
                self.config.model_name,
                backend=self.config.backend,
                device=self.config.device,
            )
        return self._model

    @property
    def dimension(self) -> int:
        return int(self._load_model().get_sentence_embedding_dimension())

    def embed(self, text: str) -> np.ndarray:
        model = self._load_model()
        try:
            embeddings = model.encode(
                [truncate(text, MAX_EMBED_CHARS)],
                show_progress_bar=False,
                convert_to_numpy=True,
                normalize_embeddings=self.config.normalize,
            )
        except Exception as exc:
            raise EmbeddingError(f"Local embedding failed: {exc}") from exc
        return embeddings[0].astype("float32", copy=False)
