import logging
from typing import Callable, List, Optional

import chromadb

from . import config

logger = logging.getLogger(__name__)


class IngredientSearchIndex:
    """Semantic name search over canonical ingredient names, backed by Chroma."""

    def __init__(self, encoder: Optional[Callable[[List[str]], List[List[float]]]] = None,
                 max_distance: float = None, collection_name: str = "ingredients"):
        self.client = chromadb.Client()
        self.collection_name = collection_name
        self.collection = self._create_collection()
        self.max_distance = config.VECTOR_MAX_DISTANCE if max_distance is None else max_distance
        self._encoder = encoder

    def _create_collection(self):
        return self.client.get_or_create_collection(
            self.collection_name,
            metadata={"hnsw:space": "cosine"},
            embedding_function=None,
        )

    @property
    def encoder(self):
        if self._encoder is None:
            from sentence_transformers import SentenceTransformer

            model = SentenceTransformer(config.EMBEDDING_MODEL)
            self._encoder = lambda texts: model.encode(texts).tolist()
        return self._encoder

    def add(self, ingredient_id: str, name: str):
        """Index one ingredient name."""
        embedding = self.encoder([name.lower()])[0]
        self.collection.upsert(
            ids=[ingredient_id],
            embeddings=[list(embedding)],
            documents=[name],
            metadatas=[{"inci_name": name}],
        )

    def search(self, query: str, limit: int = 5) -> List[str]:
        """Return ingredient ids ordered by similarity, within the distance cutoff."""
        if not query or self.collection.count() == 0:
            return []
        embedding = self.encoder([query.lower()])[0]
        results = self.collection.query(
            query_embeddings=[list(embedding)],
            n_results=min(limit, self.collection.count()),
        )
        ids = results["ids"][0]
        distances = results["distances"][0]
        matches = [ingredient_id for ingredient_id, distance in zip(ids, distances) if distance <= self.max_distance]
        logger.debug("Vector search for %r returned %d candidate(s)", query, len(matches))
        return matches

    def clear(self):
        self.client.delete_collection(self.collection_name)
        self.collection = self._create_collection()
