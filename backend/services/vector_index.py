import logging
from dataclasses import dataclass
from typing import Optional

from langchain_core.documents import Document
from langchain_openai import OpenAIEmbeddings
from sqlalchemy import delete, select, update

from config import EMBEDDING_BATCH_SIZE, EMBEDDING_MODEL
from database import session_scope
from models.base import utcnow
from models.reviews import Product
from models.vectors import IndexedChunk

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IndexScope:
    """
    The slice of the shared index a writer owns.

    Exactly one shape applies: a single uploaded resource, one
    (source, product_source) pair, or a set of product_source values for
    bulk reindexing. An empty scope is an error, so nothing can ever
    target the whole collection.
    """
    resource_id: Optional[str] = None
    source: Optional[str] = None
    product_source: Optional[str] = None
    product_sources: tuple[str, ...] = ()

    def __post_init__(self):
        if self.resource_id:
            return
        if self.source and self.product_source:
            return
        if self.product_sources:
            return
        raise ValueError("IndexScope needs a resource_id, a (source, product_source) pair, or product_sources")

    def clauses(self) -> list:
        if self.resource_id:
            return [IndexedChunk.resource_id == self.resource_id]
        if self.source and self.product_source:
            return [
                IndexedChunk.source == self.source,
                IndexedChunk.product_source == self.product_source,
            ]
        return [IndexedChunk.product_source.in_(self.product_sources)]

    def matches(self, metadata: dict) -> bool:
        if self.resource_id:
            return metadata.get("resource_id") == self.resource_id
        if self.source and self.product_source:
            return (metadata.get("source") == self.source
                    and metadata.get("product_source") == self.product_source)
        return metadata.get("product_source") in self.product_sources

    def describe(self) -> str:
        if self.resource_id:
            return f"resource_id={self.resource_id}"
        if self.source and self.product_source:
            return f"source={self.source} product_source={self.product_source}"
        return f"product_source in {sorted(self.product_sources)}"


def create_embeddings(api_key: Optional[str] = None) -> OpenAIEmbeddings:
    if api_key:
        return OpenAIEmbeddings(model=EMBEDDING_MODEL, api_key=api_key)
    return OpenAIEmbeddings(model=EMBEDDING_MODEL)


def scope_delete_statement(scope: IndexScope):
    return delete(IndexedChunk).where(*scope.clauses())


def similarity_statement(question_vector: list[float], k: int, product_id: Optional[str] = None):
    distance = IndexedChunk.embedding.cosine_distance(question_vector)
    stmt = select(IndexedChunk, (1 - distance).label("similarity")).order_by(distance).limit(k)
    if product_id:
        stmt = stmt.where(IndexedChunk.product_id == product_id)
    return stmt


class PgVectorStore:
    """pgvector-backed store for embedded chunks (cosine distance)."""

    def __init__(self, session_factory, embeddings=None):
        self.session_factory = session_factory
        self.embeddings = embeddings or create_embeddings()

    def delete(self, scope: IndexScope) -> int:
        with session_scope(self.session_factory) as db:
            result = db.execute(scope_delete_statement(scope))
            return result.rowcount or 0

    def add_documents(self, documents: list[Document]) -> int:
        written = 0
        for i in range(0, len(documents), EMBEDDING_BATCH_SIZE):
            batch = documents[i:i + EMBEDDING_BATCH_SIZE]
            vectors = self.embeddings.embed_documents([doc.page_content for doc in batch])

            with session_scope(self.session_factory) as db:
                for doc, vector in zip(batch, vectors):
                    metadata = doc.metadata
                    db.add(IndexedChunk(
                        content=doc.page_content,
                        embedding=vector,
                        product_id=metadata.get("product_id"),
                        source=metadata.get("source"),
                        product_source=metadata.get("product_source"),
                        resource_id=metadata.get("resource_id"),
                        chunk_index=metadata.get("chunk_index", 0),
                        chunk_metadata=metadata,
                    ))
            written += len(batch)
            logger.info(f"[INDEX] Embedded {written}/{len(documents)} chunks")
        return written

    def similarity_search(self, query: str, k: int, product_id: Optional[str] = None) -> list[tuple[Document, float]]:
        stmt = similarity_statement(self.embeddings.embed_query(query), k, product_id)

        with session_scope(self.session_factory) as db:
            rows = db.execute(stmt).all()
            return [
                (Document(page_content=chunk.content, metadata=chunk.chunk_metadata or {}), float(similarity))
                for chunk, similarity in rows
            ]


class VectorIndexWriter:
    """Delete-then-insert writer; the only code path that mutates the index."""

    def __init__(self, store, session_factory):
        self.store = store
        self.session_factory = session_factory

    def reindex_scope(self, scope: IndexScope, documents: list[Document], product_id: Optional[str] = None) -> dict:
        """
        Replace everything under `scope` with `documents`.

        The delete always finishes before the insert starts. If the insert
        fails after the delete went through, the scope is left empty rather
        than duplicated; running the same call again restores it.
        """
        try:
            deleted = self.store.delete(scope)
            logger.info(f"[INDEX] Deleted {deleted} stale chunks ({scope.describe()})")

            written = self.store.add_documents(documents) if documents else 0
        except Exception as e:
            logger.error(f"[INDEX] Reindex failed ({scope.describe()}): {e}")
            return {"success": False, "error": str(e)}

        if product_id and written:
            self._touch_product(product_id)

        logger.info(f"[INDEX] Wrote {written} chunks ({scope.describe()})")
        return {"success": True, "chunk_count": written}

    def _touch_product(self, product_id: str):
        try:
            with session_scope(self.session_factory) as db:
                db.execute(
                    update(Product).where(Product.id == product_id).values(last_indexed_at=utcnow())
                )
        except Exception as e:
            logger.error(f"[INDEX] Error updating last_indexed_at for product {product_id}: {e}")
