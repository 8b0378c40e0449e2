import base64
import json
import logging
from typing import Optional

import requests

from config import AMAZON_MAX_REVIEWS, Settings

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

WEBHOOK_EVENT_TYPES = [
    "ACTOR.RUN.SUCCEEDED",
    "ACTOR.RUN.FAILED",
    "ACTOR.RUN.TIMED_OUT",
    "ACTOR.RUN.ABORTED",
]


class ScrapeClientError(Exception):
    pass


def amazon_run_input(asin: str, product_id: str, max_reviews: int = AMAZON_MAX_REVIEWS) -> dict:
    return {
        "ASIN_or_URL": [asin],
        "filter_by_ratings": ["all_stars"],
        "max_reviews": max_reviews,
        "unique_only": False,
        "country": "United States",
        "End_date": "1990-01-01",
        "sort_reviews_by": ["helpful", "recent"],
        "filter_by_verified_purchase_only": ["all_reviews", "avp_only_reviews"],
        "filter_by_mediaType": ["all_contents", "media_reviews_only"],
        "filter_by_keywords": [],
        "customData": {"productId": product_id, "asin": asin},
    }


def trustpilot_run_input(company_website: str, product_id: str, filter_by_verified: bool = True) -> dict:
    return {
        "companyWebsite": company_website,
        "onlyExtractCompanyInformation": "false",
        "sortBy": "recency",
        "filterByStarRating": "",
        "filterByLanguage": "all",
        "filterByVerified": filter_by_verified,
        "filterByCountryOfReviewers": "",
        "startFromPageNumber": 1,
        "endAtPageNumber": 1,
        "customData": {"productId": product_id, "companyWebsite": company_website},
    }


class ApifyClient:
    """Minimal Apify REST client: start runs, read datasets and run input."""

    def __init__(self, settings: Settings, session: Optional[requests.Session] = None):
        self.base_url = settings.apify_base_url.rstrip("/")
        self.timeout = settings.http_timeout
        self.session = session or requests.Session()
        if settings.apify_api_token:
            self.session.headers["Authorization"] = f"Bearer {settings.apify_api_token}"

    def _request(self, method: str, path: str, **kwargs) -> requests.Response:
        url = f"{self.base_url}{path}"
        try:
            response = self.session.request(method, url, timeout=self.timeout, **kwargs)
            response.raise_for_status()
        except requests.RequestException as e:
            raise ScrapeClientError(f"{method} {path} failed: {e}") from e
        return response

    def start_actor_run(self, actor_id: str, run_input: dict, webhook_url: Optional[str] = None) -> dict:
        """Start an actor run without waiting for it; returns the run record."""
        params = {}
        if webhook_url:
            webhooks = [{"eventTypes": WEBHOOK_EVENT_TYPES, "requestUrl": webhook_url}]
            params["webhooks"] = base64.b64encode(json.dumps(webhooks).encode()).decode()

        response = self._request("POST", f"/acts/{actor_id}/runs", json=run_input, params=params)
        run = response.json().get("data", {})
        logger.info(f"[APIFY] Started actor {actor_id}: run {run.get('id')}")
        return run

    def list_dataset_items(self, dataset_id: str) -> list[dict]:
        response = self._request(
            "GET", f"/datasets/{dataset_id}/items", params={"clean": "true", "format": "json"}
        )
        items = response.json()
        logger.info(f"[APIFY] Fetched {len(items)} items from dataset {dataset_id}")
        return items

    def get_record(self, store_id: str, key: str = "INPUT") -> Optional[dict]:
        try:
            response = self._request("GET", f"/key-value-stores/{store_id}/records/{key}")
        except ScrapeClientError as e:
            logger.warning(f"[APIFY] Could not read {key} from key-value store {store_id}: {e}")
            return None
        return response.json()
