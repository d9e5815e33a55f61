"""
FAISS Vector Backend
One FAISS inner-product index per named vector space, with save/load and async search.
"""

import asyncio
import logging
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import faiss
import numpy as np

from ..errors import VectorBackendError
from .backends import BackendHit

logger = logging.getLogger(__name__)


class _SpaceIndex:
    """FAISS index plus position -> item id mapping for one space."""

    def __init__(self, dimension: int):
        self.index = faiss.IndexFlatIP(dimension)
        self.id_mapping: Dict[int, str] = {}
        self.payloads: Dict[str, Dict[str, Any]] = {}


class FaissVectorBackend:
    """
    Vector backend over FAISS flat inner-product indexes.

    Vectors are L2-normalized on the way in, so scores are cosine similarities.
    Searches run in a worker thread to keep the event loop free.
    """

    def __init__(self, dimension: int = 512):
        """
        Initialize FAISS backend.

        Args:
            dimension: Embedding dimension shared by all spaces
        """
        self.dimension = dimension
        self._spaces: Dict[str, _SpaceIndex] = {}
        self._lock = threading.RLock()

        logger.info(f"FAISS vector backend initialized (dimension={dimension})")

    @property
    def spaces(self) -> List[str]:
        return sorted(self._spaces)

    def add_items(
        self,
        space: str,
        embeddings: np.ndarray,
        item_ids: Sequence[str],
        payloads: Optional[Sequence[Dict[str, Any]]] = None,
    ) -> int:
        """
        Add item embeddings to a space, creating the space on first use.

        Args:
            space: Space name
            embeddings: Array of shape (N, dimension)
            item_ids: Item ids aligned with embeddings
            payloads: Optional metadata per item

        Returns:
            Total number of vectors in the space

        Raises:
            VectorBackendError: On shape or length mismatch
        """
        embeddings = np.asarray(embeddings, dtype=np.float32)
        if embeddings.ndim != 2 or embeddings.shape[1] != self.dimension:
            raise VectorBackendError(
                f"Embedding shape mismatch: expected (N, {self.dimension}), got {embeddings.shape}"
            )
        if len(embeddings) != len(item_ids):
            raise VectorBackendError(
                f"Mismatch between embeddings ({len(embeddings)}) and item_ids ({len(item_ids)})"
            )
        if payloads is not None and len(payloads) != len(item_ids):
            raise VectorBackendError("Payloads must align with item_ids")

        embeddings = self._normalize(embeddings)

        with self._lock:
            space_index = self._spaces.setdefault(space, _SpaceIndex(self.dimension))
            offset = space_index.index.ntotal
            space_index.index.add(embeddings)

            for i, item_id in enumerate(item_ids):
                space_index.id_mapping[offset + i] = str(item_id)
                if payloads is not None:
                    space_index.payloads[str(item_id)] = dict(payloads[i])

            total = space_index.index.ntotal

        logger.info(f"Added {len(item_ids)} vectors to space '{space}' ({total} total)")
        return total

    async def search(
        self,
        space: str,
        embedding: np.ndarray,
        limit: int,
        min_score: Optional[float] = None,
    ) -> List[BackendHit]:
        """
        Search one space for the nearest items.

        Raises:
            VectorBackendError: If the space does not exist or the query is malformed
        """
        return await asyncio.to_thread(self.search_sync, space, embedding, limit, min_score)

    def search_sync(
        self,
        space: str,
        embedding: np.ndarray,
        limit: int,
        min_score: Optional[float] = None,
    ) -> List[BackendHit]:
        """Blocking variant of search()."""
        query = np.asarray(embedding, dtype=np.float32)
        if query.ndim == 1:
            query = query.reshape(1, -1)
        if query.shape != (1, self.dimension):
            raise VectorBackendError(f"Query vector must have dimension {self.dimension}")

        query = self._normalize(query)

        with self._lock:
            space_index = self._spaces.get(space)
            if space_index is None:
                raise VectorBackendError(f"Unknown vector space: {space}")

            k = min(limit, space_index.index.ntotal)
            if k <= 0:
                return []

            scores, positions = space_index.index.search(query, k)

            hits = []
            for score, position in zip(scores[0], positions[0]):
                # FAISS returns -1 for missing results
                if position == -1:
                    continue
                item_id = space_index.id_mapping.get(int(position))
                if item_id is None:
                    logger.warning(f"FAISS position {position} not found in '{space}' mapping")
                    continue
                score = float(max(-1.0, min(1.0, score)))
                if min_score is not None and score < min_score:
                    continue
                hits.append(
                    BackendHit(
                        item_id=item_id,
                        score=score,
                        payload=dict(space_index.payloads.get(item_id, {})),
                    )
                )

        return hits

    def save(self, path: Path) -> Path:
        """
        Save every space index to disk, one subdirectory per space.

        Returns:
            Path where indexes were saved
        """
        save_path = Path(path)
        save_path.mkdir(parents=True, exist_ok=True)

        with self._lock:
            for space, space_index in self._spaces.items():
                space_path = save_path / space
                space_path.mkdir(parents=True, exist_ok=True)

                faiss.write_index(space_index.index, str(space_path / "index.faiss"))

                positions = np.array(list(space_index.id_mapping.keys()), dtype=np.int64)
                item_ids = np.array(list(space_index.id_mapping.values()), dtype=object)
                np.savez(space_path / "id_mapping.npz", positions=positions, item_ids=item_ids)

                metadata = {
                    "space": space,
                    "dimension": self.dimension,
                    "num_vectors": space_index.index.ntotal,
                    "created_at": datetime.now(timezone.utc).isoformat(),
                    "payloads": space_index.payloads,
                }
                np.save(space_path / "metadata.npy", metadata, allow_pickle=True)

        logger.info(f"Saved {len(self._spaces)} vector spaces to {save_path}")
        return save_path

    @classmethod
    def load(cls, path: Path) -> "FaissVectorBackend":
        """
        Load a backend saved with save().

        Raises:
            VectorBackendError: If the directory or any index file is missing
        """
        load_path = Path(path)
        if not load_path.exists():
            raise VectorBackendError(f"Index path does not exist: {load_path}")

        space_dirs = sorted(p for p in load_path.iterdir() if (p / "index.faiss").exists())
        if not space_dirs:
            raise VectorBackendError(f"No space indexes found in {load_path}")

        backend: Optional[FaissVectorBackend] = None
        for space_path in space_dirs:
            index = faiss.read_index(str(space_path / "index.faiss"))
            if backend is None:
                backend = cls(dimension=index.d)

            mapping_file = space_path / "id_mapping.npz"
            if not mapping_file.exists():
                raise VectorBackendError(f"ID mapping file not found: {mapping_file}")
            mapping_data = np.load(mapping_file, allow_pickle=True)

            space_index = _SpaceIndex(index.d)
            space_index.index = index
            space_index.id_mapping = {
                int(pos): str(item_id)
                for pos, item_id in zip(mapping_data["positions"], mapping_data["item_ids"])
            }

            metadata_file = space_path / "metadata.npy"
            if metadata_file.exists():
                metadata = np.load(metadata_file, allow_pickle=True).item()
                space_index.payloads = metadata.get("payloads", {})

            backend._spaces[space_path.name] = space_index

        logger.info(f"Loaded FAISS backend from {load_path}: spaces={backend.spaces}")
        return backend

    @staticmethod
    def _normalize(vectors: np.ndarray) -> np.ndarray:
        norms = np.linalg.norm(vectors, axis=1, keepdims=True)
        norms = np.maximum(norms, 1e-8)
        return (vectors / norms).astype(np.float32)
