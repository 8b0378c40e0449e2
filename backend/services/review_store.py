import logging

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from models.reviews import ReviewSource
from models.schemas import Review
from services.review_normalizer import dedupe_reviews, review_from_row

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def replace_reviews(db: Session, reviews: list[Review], source: str, product_source: str) -> int:
    """
    Replace every stored review for (product_source, source) with `reviews`.

    Delete-then-insert inside one transaction, so repeated scrapes of the
    same scope never accumulate duplicates. Reviews whose (source, id) repeat
    within the batch are dropped after the first occurrence.

    (source, source_id) is unique across the table, so a review already
    stored under another product_source moves to this one. The move is
    logged as a warning; the other scope's vector chunks keep the review
    until that scope is reindexed.
    """
    db.execute(
        delete(ReviewSource).where(
            ReviewSource.product_source == product_source,
            ReviewSource.source == source,
        )
    )

    reviews = dedupe_reviews(reviews)
    rows = [
        ReviewSource(
            product_source=product_source,
            source=source,
            source_id=review.id,
            review_text=review.text,
            review_title=review.title,
            rating=review.rating,
            review_date=review.date,
            reviewer_name=review.reviewer_name,
            verified=bool(review.verified),
            source_data=review.source_data,
        )
        for review in reviews
    ]

    if rows:
        moved = db.execute(
            delete(ReviewSource).where(
                ReviewSource.source == source,
                ReviewSource.source_id.in_([review.id for review in reviews]),
            )
        ).rowcount or 0
        if moved:
            logger.warning(
                f"[REVIEWS] Moved {moved} {source} reviews from other product sources to {product_source}"
            )

    db.add_all(rows)
    db.commit()

    logger.info(f"[REVIEWS] Stored {len(rows)} {source} reviews for {product_source}")
    return len(rows)


def load_reviews(db: Session, source: str, product_source: str, product_id: str) -> list[Review]:
    rows = db.execute(
        select(ReviewSource)
        .where(ReviewSource.product_source == product_source, ReviewSource.source == source)
        .order_by(ReviewSource.created_at, ReviewSource.id)
    ).scalars().all()
    return [review_from_row(row, product_id) for row in rows]
