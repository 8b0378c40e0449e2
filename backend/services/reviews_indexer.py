import logging
from typing import Optional

from langchain_core.documents import Document
from sqlalchemy.orm import Session

from config import REVIEWS_PER_CHUNK
from models.reviews import Product
from models.schemas import Review, SourceInfo
from services.review_normalizer import dedupe_reviews
from services.review_store import load_reviews
from services.vector_index import IndexScope, VectorIndexWriter

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def _review_block(review: Review) -> str:
    lines = []
    if review.title:
        lines.append(f"Title: {review.title}")
    lines.append(f"Rating: {review.rating:g}/5")
    if review.verified:
        lines.append("Verified Purchase")
    lines.append(f"Review: {review.text}")
    return "\n".join(lines)


def build_chunk_documents(reviews: list[Review], product_name: str) -> list[Document]:
    """
    Group reviews by (source, product_source) and cut each group into
    fixed-size batches, keeping arrival order. One batch becomes one document.
    """
    groups: dict[tuple[str, str], list[Review]] = {}
    for review in reviews:
        groups.setdefault((review.source, review.product_source), []).append(review)

    documents = []
    for (source, product_source), group in groups.items():
        for chunk_index, start in enumerate(range(0, len(group), REVIEWS_PER_CHUNK)):
            batch = group[start:start + REVIEWS_PER_CHUNK]
            header = f"Product: {product_name}\nSource: {source}"
            body = "\n\n".join(_review_block(review) for review in batch)

            documents.append(Document(
                page_content=f"{header}\n\n{body}",
                metadata={
                    "product_id": batch[0].product_id,
                    "product_name": product_name,
                    "source": source,
                    "product_source": product_source,
                    "chunk_index": chunk_index,
                    "review_count": len(batch),
                },
            ))

    return documents


class ReviewsIndexer:

    def __init__(self, writer: VectorIndexWriter):
        self.writer = writer

    def index_product_reviews(
        self,
        reviews: list[Review],
        product_name: str,
        source_info: Optional[SourceInfo] = None,
    ) -> dict:
        """
        Re-index a batch of reviews, replacing whatever the scope held before.

        With `source_info` the scope is exactly that (source, identifier);
        without it, every product_source present in the batch is replaced.
        A review id repeated in the batch is indexed once.
        """
        reviews = dedupe_reviews(reviews)
        logger.info(f"[INDEX] Starting to index {len(reviews)} reviews for product: {product_name}")

        if source_info:
            scope = IndexScope(source=source_info.source, product_source=source_info.source_identifier)
        elif reviews:
            scope = IndexScope(product_sources=tuple(sorted({r.product_source for r in reviews})))
        else:
            scope = None

        if not reviews:
            if scope is not None:
                result = self.writer.reindex_scope(scope, [])
                if not result["success"]:
                    return result
            return {"success": True, "count": 0, "chunks": 0}

        documents = build_chunk_documents(reviews, product_name)
        logger.info(f"[INDEX] Created {len(documents)} chunk documents")

        result = self.writer.reindex_scope(scope, documents, product_id=reviews[0].product_id)
        if not result["success"]:
            return {"success": False, "error": result["error"]}

        return {"success": True, "count": len(reviews), "chunks": result["chunk_count"]}

    def reindex_product(self, db: Session, product_id: str) -> dict:
        """Rebuild the index for a product from its stored reviews."""
        product = db.get(Product, product_id)
        if product is None:
            return {"success": False, "error": "Product not found"}

        metadata = product.metadata_ or {}
        reviews: list[Review] = []
        if metadata.get("url"):
            reviews.extend(load_reviews(db, "trustpilot", metadata["url"], product_id))
        if metadata.get("amazon_asin"):
            reviews.extend(load_reviews(db, "amazon", metadata["amazon_asin"].strip(), product_id))

        if not reviews:
            return {"success": False, "error": "No reviews found for this product"}

        logger.info(f"[INDEX] Found {len(reviews)} stored reviews to index for {product.name}")
        return self.index_product_reviews(reviews, product.name)
