"""
Unit tests for stored review replacement.
"""

import logging

from sqlalchemy import func, select

from models.reviews import ReviewSource
from services.review_store import load_reviews, replace_reviews


def count_rows(db, **filters):
    stmt = select(func.count()).select_from(ReviewSource)
    for column, value in filters.items():
        stmt = stmt.where(getattr(ReviewSource, column) == value)
    return db.execute(stmt).scalar_one()


class TestReplaceReviews:
    """Test delete-then-insert semantics per (product_source, source)."""

    def test_stores_reviews(self, db, make_review):
        """Test a first batch is inserted in full."""
        reviews = [make_review() for _ in range(3)]

        stored = replace_reviews(db, reviews, "amazon", "B000TEST01")

        assert stored == 3
        assert count_rows(db, source="amazon", product_source="B000TEST01") == 3

    def test_repeated_batches_do_not_accumulate(self, db, make_review):
        """Test storing the same batch twice leaves one copy."""
        reviews = [make_review() for _ in range(3)]

        replace_reviews(db, reviews, "amazon", "B000TEST01")
        replace_reviews(db, reviews, "amazon", "B000TEST01")

        assert count_rows(db) == 3

    def test_smaller_batch_replaces_larger(self, db, make_review):
        """Test reviews missing from the new batch are removed."""
        replace_reviews(db, [make_review() for _ in range(5)], "amazon", "B000TEST01")
        replace_reviews(db, [make_review()], "amazon", "B000TEST01")

        assert count_rows(db) == 1

    def test_other_scopes_untouched(self, db, make_review):
        """Test replacing one scope leaves other sources and identifiers alone."""
        replace_reviews(db, [make_review(source="trustpilot", product_source="acme.example")],
                        "trustpilot", "acme.example")
        replace_reviews(db, [make_review(product_source="B000OTHER1")], "amazon", "B000OTHER1")

        replace_reviews(db, [make_review()], "amazon", "B000TEST01")

        assert count_rows(db, source="trustpilot") == 1
        assert count_rows(db, product_source="B000OTHER1") == 1
        assert count_rows(db, product_source="B000TEST01") == 1

    def test_duplicate_ids_within_batch(self, db, make_review):
        """Test a review id repeated in one batch is stored once."""
        first = make_review(id="R-dup")
        second = make_review(id="R-dup", text="A second copy")

        stored = replace_reviews(db, [first, second], "amazon", "B000TEST01")

        assert stored == 1
        row = db.execute(select(ReviewSource)).scalar_one()
        assert row.review_text == first.text

    def test_review_shared_with_other_product_source_moves(self, db, make_review, caplog):
        """Test a review id already stored under another ASIN moves here and the move is logged."""
        replace_reviews(db, [make_review(id="R-shared", product_source="B000OTHER1"),
                             make_review(id="R-other-only", product_source="B000OTHER1")],
                        "amazon", "B000OTHER1")

        with caplog.at_level(logging.WARNING, logger="services.review_store"):
            replace_reviews(db, [make_review(id="R-shared")], "amazon", "B000TEST01")

        assert count_rows(db, product_source="B000TEST01") == 1
        assert count_rows(db, product_source="B000OTHER1") == 1
        assert "Moved 1 amazon reviews from other product sources to B000TEST01" in caplog.text

    def test_no_move_logged_for_own_scope(self, db, make_review, caplog):
        """Test replacing a scope's own reviews logs no move."""
        replace_reviews(db, [make_review(id="R-1")], "amazon", "B000TEST01")

        with caplog.at_level(logging.WARNING, logger="services.review_store"):
            replace_reviews(db, [make_review(id="R-1")], "amazon", "B000TEST01")

        assert "Moved" not in caplog.text


class TestLoadReviews:
    """Test reading stored reviews back as canonical reviews."""

    def test_round_trips_scope(self, db, make_review):
        """Test stored rows come back with their columns and scope."""
        original = make_review(id="R1", title="Solid", rating=5.0)
        replace_reviews(db, [original], "amazon", "B000TEST01")

        [review] = load_reviews(db, "amazon", "B000TEST01", "product-1")

        assert review.id == "R1"
        assert review.title == "Solid"
        assert review.rating == 5.0
        assert review.product_id == "product-1"
        assert review.product_source == "B000TEST01"
        assert review.verified is True

    def test_empty_scope(self, db):
        """Test an unknown scope yields no reviews."""
        assert load_reviews(db, "amazon", "B000NONE00", "product-1") == []
