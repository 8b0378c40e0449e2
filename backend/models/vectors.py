from sqlalchemy import Column, DateTime, Index, Integer, JSON, String, Text
from pgvector.sqlalchemy import Vector
import uuid

from config import EMBEDDING_DIMENSION
from models.base import Base, utcnow


class IndexedChunk(Base):
    """Embedded chunk in the shared, scope-partitioned vector index"""
    __tablename__ = "indexed_chunks"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    content = Column(Text, nullable=False)
    embedding = Column(Vector(EMBEDDING_DIMENSION))

    # scope columns
    product_id = Column(String, nullable=True, index=True)
    source = Column(String, nullable=True)
    product_source = Column(String, nullable=True)
    resource_id = Column(String, nullable=True, index=True)
    chunk_index = Column(Integer, nullable=False, default=0)

    chunk_metadata = Column(JSON)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (
        Index(
            'indexed_chunks_embedding_idx', 'embedding',
            postgresql_using='ivfflat',
            postgresql_ops={'embedding': 'vector_cosine_ops'},
        ),
        Index('indexed_chunks_scope_idx', 'source', 'product_source'),
    )
