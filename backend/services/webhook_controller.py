"""
Apify webhook ingestion.

Verifies and parses run-completion notifications, then drives a successful
run through normalize -> store -> index while moving its scraping job along
completed -> indexing -> indexed | index_failed.
"""
import hashlib
import hmac
import json
import logging
from dataclasses import dataclass, field
from typing import Optional

from sqlalchemy.orm import Session

from config import Settings
from models.reviews import Product
from models.schemas import SourceInfo
from services import scrape_jobs
from services.apify_client import ApifyClient
from services.review_normalizer import extract_asin, normalize_items
from services.review_store import replace_reviews
from services.reviews_indexer import ReviewsIndexer
from services.scrape_jobs import JobStatus

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

SUCCEEDED_EVENT = "ACTOR.RUN.SUCCEEDED"
FAILURE_EVENTS = {"ACTOR.RUN.FAILED", "ACTOR.RUN.TIMED_OUT", "ACTOR.RUN.ABORTED"}
REQUIRED_RESOURCE_FIELDS = ("actId", "defaultDatasetId", "defaultKeyValueStoreId", "id")


@dataclass
class WebhookResponse:
    status_code: int
    body: dict = field(default_factory=dict)


def sign_payload(secret: str, raw_body: bytes) -> str:
    return hmac.new(secret.encode(), raw_body, hashlib.sha256).hexdigest()


class WebhookController:

    def __init__(self, settings: Settings, scrape_client: ApifyClient, session_factory, indexer: ReviewsIndexer):
        self.settings = settings
        self.scrape_client = scrape_client
        self.session_factory = session_factory
        self.indexer = indexer
        self.actor_sources = {
            settings.trustpilot_actor_id: "trustpilot",
            settings.amazon_actor_id: "amazon",
        }

    def handle(self, raw_body: bytes, signature: Optional[str]) -> WebhookResponse:
        logger.info("[WEBHOOK] Received Apify webhook request")

        try:
            payload = json.loads(raw_body)
        except (ValueError, UnicodeDecodeError) as e:
            logger.error(f"[WEBHOOK] Failed to parse webhook payload as JSON: {e}")
            return WebhookResponse(400, {"error": "Invalid JSON payload"})
        if not isinstance(payload, dict):
            return WebhookResponse(400, {"error": "Invalid JSON payload"})

        rejection = self._authenticate(raw_body, signature)
        if rejection:
            return rejection

        event_type = payload.get("eventType")
        resource = payload.get("resource") or {}

        if event_type != SUCCEEDED_EVENT:
            if event_type in FAILURE_EVENTS and resource.get("id"):
                self._mark_run_failed(resource["id"], f"Scraping run ended with {event_type}")
            logger.info(f"[WEBHOOK] Ignoring event type: {event_type}")
            return WebhookResponse(200, {"message": "Event type not processed"})

        missing = [name for name in REQUIRED_RESOURCE_FIELDS if not resource.get(name)]
        if missing:
            logger.error(f"[WEBHOOK] Missing required data: {missing}")
            return WebhookResponse(400, {"error": "Missing required data", "missing": missing})

        run_id = resource["id"]
        try:
            return self._process_run(resource)
        except Exception as e:
            logger.exception(f"[WEBHOOK] Failed to process run {run_id}")
            self._mark_run_failed(run_id, str(e))
            return WebhookResponse(500, {"error": str(e) or "Unknown error processing reviews"})

    def _authenticate(self, raw_body: bytes, signature: Optional[str]) -> Optional[WebhookResponse]:
        secret = self.settings.apify_webhook_secret
        if not secret:
            logger.warning("[WEBHOOK] APIFY_WEBHOOK_SECRET not set - skipping signature verification")
            return None

        if not signature:
            logger.error("[WEBHOOK][AUTH] Missing webhook signature")
            return WebhookResponse(401, {"error": "Missing signature header"})

        expected = sign_payload(secret, raw_body)
        if not hmac.compare_digest(expected, signature.strip()):
            logger.error("[WEBHOOK][AUTH] Invalid webhook signature")
            return WebhookResponse(401, {"error": "Invalid signature"})
        return None

    def _process_run(self, resource: dict) -> WebhookResponse:
        run_id = resource["id"]
        db: Session = self.session_factory()
        try:
            source, product_id, identifier = self._resolve_context(db, resource)
            logger.info(f"[WEBHOOK] Processing {source} run {run_id} for {identifier}")

            scrape_jobs.update_status(db, run_id, JobStatus.COMPLETED)

            items = self.scrape_client.list_dataset_items(resource["defaultDatasetId"])
            if not items:
                logger.info(f"[WEBHOOK] No items in dataset for run {run_id}")
                scrape_jobs.update_status(db, run_id, JobStatus.INDEXING)
                scrape_jobs.update_status(db, run_id, JobStatus.INDEXED)
                return WebhookResponse(200, {"message": "No items to process", "processed": 0})

            # Repeated ids are already dropped, so stored rows and indexed chunks match.
            reviews = normalize_items(source, items, product_id, identifier)
            stored = replace_reviews(db, reviews, source, identifier)

            product = db.get(Product, product_id)
            product_name = product.name if product else identifier

            scrape_jobs.update_status(db, run_id, JobStatus.INDEXING)
            result = self.indexer.index_product_reviews(
                reviews, product_name, SourceInfo(source=source, source_identifier=identifier)
            )
            if not result["success"]:
                scrape_jobs.update_status(db, run_id, JobStatus.INDEX_FAILED, error_message=result["error"])
                return WebhookResponse(500, {"error": result["error"]})

            scrape_jobs.update_status(db, run_id, JobStatus.INDEXED)
            return WebhookResponse(200, {
                "message": "Successfully processed webhook",
                "processed": len(items),
                "stored": stored,
                "chunks": result["chunks"],
            })
        finally:
            db.close()

    def _resolve_context(self, db: Session, resource: dict) -> tuple[str, str, str]:
        """
        Recover (source, product_id, source_identifier) for a run.

        The tracked job row is the correlation record; the run's INPUT record
        in the key-value store is read only for runs started elsewhere.
        """
        source = self.actor_sources.get(resource["actId"])
        job = scrape_jobs.get_job_by_run_id(db, resource["id"])

        if job is not None:
            if source and source != job.source:
                raise ValueError(f"Actor {resource['actId']} does not match job source {job.source}")
            return job.source, job.product_id, job.source_identifier

        if source is None:
            raise ValueError(f"Unknown actor ID: {resource['actId']}")

        record = self.scrape_client.get_record(resource["defaultKeyValueStoreId"], "INPUT")
        if not record:
            raise ValueError("Failed to fetch input from key-value store")

        custom = record.get("customData") or {}
        product_id = custom.get("productId")
        if source == "trustpilot":
            identifier = custom.get("companyWebsite") or record.get("companyWebsite")
        else:
            identifier = custom.get("asin")
            if not identifier and record.get("ASIN_or_URL"):
                identifier = extract_asin(record["ASIN_or_URL"][0])

        if not product_id or not identifier:
            raise ValueError(f"Missing productId or source identifier in {source} run input")
        return source, product_id, identifier

    def _mark_run_failed(self, run_id: str, message: str):
        db = self.session_factory()
        try:
            scrape_jobs.update_status(db, run_id, JobStatus.FAILED, error_message=message)
        except Exception as e:
            logger.error(f"[WEBHOOK] Could not mark run {run_id} as failed: {e}")
        finally:
            db.close()
