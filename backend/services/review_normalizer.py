import logging
import re
import uuid
from datetime import date, datetime
from typing import Iterable, Optional

from dateutil import parser as date_parser
from pydantic import TypeAdapter, ValidationError

from models.base import utcnow
from models.schemas import AmazonReviewItem, RawReviewItem, Review, TrustpilotReviewItem

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# "Friday, March 22, 2024 at 01:22:45 PM" -> "March 22, 2024"
TRUSTPILOT_PROSE_DATE = re.compile(r"([A-Za-z]+), ([A-Za-z]+ \d{1,2}, \d{4})")
ASIN_IN_URL = re.compile(r"/([A-Z0-9]{10})(?:/|\?|$)")
RATING_SCALE = (1.0, 5.0)

_raw_item_adapter = TypeAdapter(RawReviewItem)


def parse_review_date(value: Optional[str], source: str) -> Optional[date]:
    """
    Parse a scraped review date into a calendar date.

    Trustpilot dates come embedded in prose and are pattern-matched first;
    anything else (Amazon's "April 29, 2024", ISO strings) goes through the
    generic parser. Returns None instead of raising on garbage.
    """
    if not value:
        return None

    candidate = value.strip()
    if source == "trustpilot":
        match = TRUSTPILOT_PROSE_DATE.search(candidate)
        if match:
            candidate = match.group(2)

    try:
        return date_parser.parse(candidate).date()
    except (ValueError, OverflowError, TypeError):
        logger.debug(f"[NORMALIZE] Unparsable {source} date: {value!r}")
        return None


def extract_asin(value: str) -> str:
    """Pull the ASIN out of an Amazon product URL; plain ASINs pass through."""
    if "/" in value:
        match = ASIN_IN_URL.search(value)
        if match:
            return match.group(1)
    return value.strip()


def _review_date(raw: Optional[str], source: str, ingested_at: datetime) -> str:
    parsed = parse_review_date(raw, source)
    return (parsed or ingested_at.date()).isoformat()


def _normalize_amazon(item: AmazonReviewItem, product_id: str, product_source: str,
                      ingested_at: datetime) -> Review:
    return Review(
        id=item.review_id or f"amazon-{uuid.uuid4().hex}",
        product_id=product_id,
        text=item.content,
        title=item.title or None,
        rating=item.rating,
        source="amazon",
        date=_review_date(item.date, "amazon", ingested_at),
        reviewer_name=item.reviewer or "Anonymous",
        verified=item.verified,
        product_title=item.product_title,
        product_source=product_source,
        source_data=item.model_dump(by_alias=False, exclude={"kind"}),
    )


def _normalize_trustpilot(item: TrustpilotReviewItem, product_id: str, product_source: str,
                          ingested_at: datetime) -> Review:
    return Review(
        id=item.review_id or f"trustpilot-{uuid.uuid4().hex}",
        product_id=product_id,
        text=item.content,
        title=item.title or None,
        rating=item.rating,
        source="trustpilot",
        date=_review_date(item.date, "trustpilot", ingested_at),
        reviewer_name=item.reviewer or "Anonymous",
        verified=item.verified,
        product_title=item.company_name,
        product_source=product_source,
        source_data=item.model_dump(by_alias=False, exclude={"kind"}),
    )


NORMALIZERS = {
    "amazon": _normalize_amazon,
    "trustpilot": _normalize_trustpilot,
}


def normalize_items(
    kind: str,
    items: Iterable[dict],
    product_id: str,
    product_source: str,
    ingested_at: Optional[datetime] = None,
) -> list[Review]:
    """
    Convert one source's scraped dataset items into canonical reviews.

    Args:
        kind: "amazon" or "trustpilot", the tag every item is dispatched on
        items: raw dataset items from the scraping run
        product_id: internal product the reviews belong to
        product_source: ASIN or company URL the run was scoped to
        ingested_at: fallback date for items whose date cannot be parsed

    Malformed items, including ones without a 1-5 rating, are logged and
    skipped; they never abort the batch. A repeated review id keeps its
    first occurrence.
    """
    if kind not in NORMALIZERS:
        raise ValueError(f"Unknown review source: {kind}")

    ingested_at = ingested_at or utcnow()
    normalize = NORMALIZERS[kind]
    reviews = []
    skipped = 0

    for position, raw in enumerate(items):
        try:
            item = _raw_item_adapter.validate_python({**raw, "kind": kind})
        except (ValidationError, TypeError) as e:
            skipped += 1
            logger.warning(f"[NORMALIZE] Skipping malformed {kind} item #{position}: {e}")
            continue

        if not item.content.strip():
            skipped += 1
            logger.warning(f"[NORMALIZE] Skipping {kind} item #{position}: empty review text")
            continue

        low, high = RATING_SCALE
        if item.rating is None or not low <= item.rating <= high:
            skipped += 1
            logger.warning(f"[NORMALIZE] Skipping {kind} item #{position}: rating {item.rating!r} outside 1-5")
            continue

        reviews.append(normalize(item, product_id, product_source, ingested_at))

    if skipped:
        logger.info(f"[NORMALIZE] Skipped {skipped} of {skipped + len(reviews)} {kind} items")

    return dedupe_reviews(reviews)


def dedupe_reviews(reviews: Iterable[Review]) -> list[Review]:
    """Keep the first review per (source, id); scrapers can return the same review twice."""
    seen = set()
    unique = []
    dropped = 0
    for review in reviews:
        key = (review.source, review.id)
        if key in seen:
            dropped += 1
            continue
        seen.add(key)
        unique.append(review)

    if dropped:
        logger.info(f"[NORMALIZE] Dropped {dropped} repeated review ids")
    return unique


def review_from_row(row, product_id: str) -> Review:
    """
    Build a Review from a stored review_sources row.

    Top-level columns win over the raw payload kept in source_data.
    """
    source_data = row.source_data or {}
    if row.source == "amazon":
        raw_title = source_data.get("title") or source_data.get("ReviewTitle")
        raw_reviewer = source_data.get("reviewer") or source_data.get("Reviewer")
        product_title = source_data.get("product_title") or source_data.get("ProductTitle")
    else:
        raw_title = source_data.get("title") or source_data.get("reviewTitle")
        raw_reviewer = source_data.get("reviewer")
        product_title = source_data.get("company_name") or source_data.get("companyName")

    raw_verified = source_data.get("verified")
    if raw_verified is None:
        raw_verified = source_data.get("Verified", source_data.get("isReviewVerified"))

    created_at = row.created_at or utcnow()
    return Review(
        id=row.source_id,
        product_id=product_id,
        text=row.review_text,
        title=row.review_title or raw_title,
        rating=row.rating,
        source=row.source,
        date=row.review_date or created_at.date().isoformat(),
        reviewer_name=row.reviewer_name or raw_reviewer,
        verified=bool(row.verified) or str(raw_verified).lower() == "true",
        product_title=product_title,
        product_source=row.product_source,
        source_data=source_data,
    )
