from sqlalchemy import (
    Boolean, Column, DateTime, Float, ForeignKey, Index, JSON, String, Text, UniqueConstraint
)
import uuid

from models.base import Base, utcnow


class Product(Base):
    """A tracked product; `metadata_` holds `url` (Trustpilot) and `amazon_asin`."""
    __tablename__ = "products"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    name = Column(Text, nullable=False)
    description = Column(Text, nullable=True)
    metadata_ = Column("metadata", JSON, default=dict)
    last_reviews_scraped_at = Column(DateTime(timezone=True), nullable=True)
    last_indexed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


class ProductCompetitor(Base):
    __tablename__ = "product_competitors"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    product_id = Column(String, ForeignKey("products.id"), nullable=False, index=True)
    competitor_product_id = Column(String, ForeignKey("products.id"), nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)


class ReviewSource(Base):
    """One scraped review as stored, keyed for replacement by (product_source, source)."""
    __tablename__ = "review_sources"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    product_source = Column(String, nullable=False)
    source = Column(String, nullable=False)
    source_id = Column(String, nullable=False)
    review_text = Column(Text, nullable=False)
    review_title = Column(Text, nullable=True)
    rating = Column(Float, nullable=False)
    review_date = Column(String, nullable=True)
    reviewer_name = Column(String, nullable=True)
    verified = Column(Boolean, default=False)
    source_data = Column(JSON, default=dict)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (
        UniqueConstraint("source", "source_id", name="review_sources_source_source_id_key"),
        Index("review_sources_product_source_idx", "product_source", "source"),
    )


class ScrapingJob(Base):
    """Audit row for one external scraping run; never deleted."""
    __tablename__ = "scraping_jobs"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    product_id = Column(String, ForeignKey("products.id"), nullable=False, index=True)
    source = Column(String, nullable=False)
    status = Column(String, nullable=False, default="queued", index=True)
    source_identifier = Column(String, nullable=False, index=True)
    actor_run_id = Column(String, nullable=True, unique=True)
    started_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    indexed_at = Column(DateTime(timezone=True), nullable=True)
    error_message = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)
