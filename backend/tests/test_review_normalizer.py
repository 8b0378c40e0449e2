"""
Unit tests for review normalization.

Covers per-source field mapping, rating/date parsing and the skip rules for
malformed dataset items.
"""

from datetime import date, datetime, timezone

import pytest

from models.reviews import ReviewSource
from services.review_normalizer import extract_asin, normalize_items, parse_review_date, review_from_row

INGESTED_AT = datetime(2024, 1, 2, 9, 30, tzinfo=timezone.utc)


def amazon_item(**overrides):
    item = {
        "ParentId": "R1AMZ",
        "ReviewContent": "Sturdy and easy to set up.",
        "ReviewTitle": "Does the job",
        "ReviewScore": "4.0 out of 5 stars",
        "ReviewDate": "April 29, 2024",
        "Reviewer": "Ann",
        "Verified": "True",
        "ProductTitle": "Acme Widget",
        "ASIN": "B000TEST01",
    }
    item.update(overrides)
    return item


def trustpilot_item(**overrides):
    item = {
        "reviewId": "tp-1",
        "reviewBody": "Support sorted my order out in a day.",
        "reviewTitle": "Great support",
        "reviewRatingScore": 5,
        "reviewDate": "Friday, March 22, 2024 at 01:22:45 PM",
        "reviewer": "Bob",
        "isReviewVerified": True,
        "companyName": "Acme",
    }
    item.update(overrides)
    return item


class TestParseReviewDate:
    """Test date parsing across source formats."""

    def test_trustpilot_prose_date(self):
        """Test the weekday/time prose Trustpilot emits reduces to its calendar date."""
        assert parse_review_date("Friday, March 22, 2024 at 01:22:45 PM", "trustpilot") == date(2024, 3, 22)

    def test_amazon_long_date(self):
        """Test Amazon's month-name dates parse directly."""
        assert parse_review_date("April 29, 2024", "amazon") == date(2024, 4, 29)

    def test_iso_timestamp(self):
        """Test ISO timestamps from either source parse."""
        assert parse_review_date("2024-03-22T10:15:00Z", "trustpilot") == date(2024, 3, 22)

    def test_garbage_returns_none(self):
        """Test unparsable strings return None instead of raising."""
        assert parse_review_date("not a date", "amazon") is None

    def test_empty_returns_none(self):
        """Test missing values return None."""
        assert parse_review_date(None, "amazon") is None
        assert parse_review_date("", "trustpilot") is None


class TestNormalizeAmazon:
    """Test Amazon dataset item mapping."""

    def test_maps_fields(self):
        """Test every canonical field is populated from the Amazon item."""
        [review] = normalize_items("amazon", [amazon_item()], "product-1", "B000TEST01", INGESTED_AT)

        assert review.id == "R1AMZ"
        assert review.product_id == "product-1"
        assert review.text == "Sturdy and easy to set up."
        assert review.title == "Does the job"
        assert review.rating == 4.0
        assert review.source == "amazon"
        assert review.date == "2024-04-29"
        assert review.reviewer_name == "Ann"
        assert review.verified is True
        assert review.product_title == "Acme Widget"
        assert review.product_source == "B000TEST01"

    def test_numeric_rating(self):
        """Test a bare numeric score is accepted as-is."""
        [review] = normalize_items("amazon", [amazon_item(ReviewScore=2)], "product-1", "B000TEST01")
        assert review.rating == 2.0

    def test_missing_id_is_generated(self):
        """Test items without an id still get a stable-looking unique id."""
        item = amazon_item()
        del item["ParentId"]

        [first, second] = normalize_items("amazon", [item, dict(item)], "product-1", "B000TEST01")

        assert first.id.startswith("amazon-")
        assert first.id != second.id

    def test_unparsable_date_falls_back_to_ingestion_date(self):
        """Test the ingestion date is used when the scraped date cannot be parsed."""
        [review] = normalize_items(
            "amazon", [amazon_item(ReviewDate="sometime last spring")], "product-1", "B000TEST01", INGESTED_AT
        )
        assert review.date == "2024-01-02"

    def test_missing_reviewer_is_anonymous(self):
        """Test a missing reviewer name defaults to Anonymous."""
        item = amazon_item()
        del item["Reviewer"]

        [review] = normalize_items("amazon", [item], "product-1", "B000TEST01")

        assert review.reviewer_name == "Anonymous"

    def test_raw_payload_kept_in_source_data(self):
        """Test unknown scraper fields survive in source_data but not in dumps."""
        [review] = normalize_items(
            "amazon", [amazon_item(HelpfulVotes="12")], "product-1", "B000TEST01"
        )

        assert review.source_data["HelpfulVotes"] == "12"
        assert "source_data" not in review.model_dump()


class TestNormalizeTrustpilot:
    """Test Trustpilot dataset item mapping."""

    def test_maps_fields(self):
        """Test every canonical field is populated from the Trustpilot item."""
        [review] = normalize_items("trustpilot", [trustpilot_item()], "product-1", "acme.example", INGESTED_AT)

        assert review.id == "tp-1"
        assert review.text == "Support sorted my order out in a day."
        assert review.title == "Great support"
        assert review.rating == 5.0
        assert review.source == "trustpilot"
        assert review.date == "2024-03-22"
        assert review.reviewer_name == "Bob"
        assert review.verified is True
        assert review.product_title == "Acme"
        assert review.product_source == "acme.example"

    def test_alternate_field_names(self):
        """Test the older reviewText/ratingValue/datePublished fields are accepted."""
        item = {
            "id": "tp-legacy",
            "reviewText": "Still good.",
            "ratingValue": "3",
            "datePublished": "2023-11-05",
        }

        [review] = normalize_items("trustpilot", [item], "product-1", "acme.example")

        assert review.id == "tp-legacy"
        assert review.rating == 3.0
        assert review.date == "2023-11-05"
        assert review.verified is False


class TestNormalizeItemsSkipping:
    """Test malformed and empty items are skipped without aborting the batch."""

    def test_empty_text_skipped(self):
        """Test items without review text are dropped."""
        items = [amazon_item(ReviewContent="   "), amazon_item(ParentId="R2")]

        reviews = normalize_items("amazon", items, "product-1", "B000TEST01")

        assert [r.id for r in reviews] == ["R2"]

    def test_malformed_items_skipped(self):
        """Test items that fail validation or are not objects are dropped."""
        items = [
            amazon_item(ReviewScore={"stars": 4}),
            "not an object",
            amazon_item(ParentId="R3"),
        ]

        reviews = normalize_items("amazon", items, "product-1", "B000TEST01")

        assert [r.id for r in reviews] == ["R3"]

    def test_unparsable_rating_skipped(self):
        """Test an item whose rating has no number in it is dropped, not stored as 0."""
        items = [amazon_item(ReviewScore="no stars yet"), amazon_item(ParentId="R2")]

        reviews = normalize_items("amazon", items, "product-1", "B000TEST01")

        assert [r.id for r in reviews] == ["R2"]

    def test_missing_rating_skipped(self):
        """Test a Trustpilot item without any rating field is dropped."""
        item = trustpilot_item()
        del item["reviewRatingScore"]

        assert normalize_items("trustpilot", [item], "product-1", "acme.example") == []

    def test_out_of_scale_rating_skipped(self):
        """Test ratings outside 1-5 are dropped."""
        items = [amazon_item(ParentId="R0", ReviewScore=0), amazon_item(ParentId="R6", ReviewScore="6 stars"),
                 amazon_item(ParentId="R5", ReviewScore=5)]

        reviews = normalize_items("amazon", items, "product-1", "B000TEST01")

        assert [r.id for r in reviews] == ["R5"]

    def test_repeated_ids_keep_first(self):
        """Test an item repeated in one dataset comes back once, first copy first."""
        items = [
            amazon_item(ParentId="R1"),
            amazon_item(ParentId="R2"),
            amazon_item(ParentId="R1", ReviewContent="Later copy"),
        ]

        reviews = normalize_items("amazon", items, "product-1", "B000TEST01")

        assert [r.id for r in reviews] == ["R1", "R2"]
        assert reviews[0].text == "Sturdy and easy to set up."

    def test_unknown_source_rejected(self):
        """Test an unsupported source kind raises."""
        with pytest.raises(ValueError):
            normalize_items("yelp", [amazon_item()], "product-1", "B000TEST01")


class TestExtractAsin:
    """Test ASIN extraction."""

    def test_from_product_url(self):
        """Test the ASIN is pulled out of a /dp/ URL."""
        assert extract_asin("https://www.amazon.com/dp/B000TEST01/ref=sr_1_1") == "B000TEST01"

    def test_plain_asin_passes_through(self):
        """Test a bare ASIN is returned stripped."""
        assert extract_asin(" B000TEST01 ") == "B000TEST01"


class TestReviewFromRow:
    """Test rebuilding reviews from stored rows."""

    def test_columns_win_over_source_data(self):
        """Test stored columns take precedence over the raw payload."""
        row = ReviewSource(
            product_source="B000TEST01",
            source="amazon",
            source_id="R1AMZ",
            review_text="Stored text",
            review_title="Stored title",
            rating=3.0,
            review_date="2024-04-29",
            reviewer_name="Stored reviewer",
            verified=False,
            source_data={"title": "Raw title", "reviewer": "Raw reviewer", "product_title": "Acme Widget",
                         "verified": True},
        )

        review = review_from_row(row, "product-1")

        assert review.id == "R1AMZ"
        assert review.title == "Stored title"
        assert review.reviewer_name == "Stored reviewer"
        assert review.product_title == "Acme Widget"
        assert review.verified is True
        assert review.date == "2024-04-29"
