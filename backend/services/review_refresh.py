import logging
from datetime import timedelta
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from config import STALENESS_DAYS, Settings
from models.base import as_utc, utcnow
from models.reviews import Product, ProductCompetitor
from services import scrape_jobs
from services.apify_client import ApifyClient, ScrapeClientError, amazon_run_input, trustpilot_run_input

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def configured_sources(product: Product) -> dict[str, str]:
    """source -> identifier for every review source the product has set up."""
    metadata = product.metadata_ or {}
    sources = {}
    if metadata.get("url"):
        sources["trustpilot"] = metadata["url"].strip()
    if metadata.get("amazon_asin"):
        sources["amazon"] = metadata["amazon_asin"].strip()
    return sources


def needs_refresh(product: Product, force_refresh: bool = False) -> bool:
    if force_refresh or product.last_reviews_scraped_at is None:
        return True
    return as_utc(product.last_reviews_scraped_at) < utcnow() - timedelta(days=STALENESS_DAYS)


class ReviewRefreshOrchestrator:
    """
    Decides whether a product's reviews are stale and kicks off scrapes.

    Runs are only started here; their results arrive later through the
    webhook, which is what actually ingests and indexes the reviews.
    """

    def __init__(self, settings: Settings, scrape_client: ApifyClient, session_factory):
        self.settings = settings
        self.scrape_client = scrape_client
        self.session_factory = session_factory

    def refresh_all_reviews(
        self,
        product_id: str,
        force_refresh: bool = False,
        include_competitors: bool = True,
        sources: Optional[list[str]] = None,
    ) -> dict:
        results = {
            "success": True,
            "sources": [],
            "errors": 0,
            "from_cache": False,
            "cache_date": None,
            "message": None,
            "error": None,
            "competitor_results": [],
        }

        db: Session = self.session_factory()
        try:
            try:
                main = self.refresh_single_product(db, product_id, force_refresh, sources)
            except Exception as e:
                logger.error(f"[REFRESH] Error refreshing main product {product_id}: {e}")
                results["success"] = False
                results["error"] = str(e)
                return results

            results["sources"] = main["sources"]
            results["errors"] = main["errors"]
            if main.get("from_cache"):
                results["from_cache"] = True
                results["cache_date"] = main["cache_date"]
                results["message"] = main["message"]
            else:
                results["success"] = results["errors"] < len(results["sources"])

            if include_competitors:
                results["competitor_results"] = self._refresh_competitors(db, product_id, force_refresh, sources)
        finally:
            db.close()

        return results

    def _refresh_competitors(self, db: Session, product_id: str, force_refresh: bool,
                             sources: Optional[list[str]]) -> list[dict]:
        competitors = db.execute(
            select(Product)
            .join(ProductCompetitor, ProductCompetitor.competitor_product_id == Product.id)
            .where(ProductCompetitor.product_id == product_id)
        ).scalars().all()

        if not competitors:
            logger.info(f"[REFRESH] No competitors found for product {product_id}")
            return []

        logger.info(f"[REFRESH] Processing {len(competitors)} competitors for product {product_id}")
        summaries = []
        for competitor in competitors:
            try:
                outcome = self.refresh_single_product(db, competitor.id, force_refresh, sources)
                summaries.append({
                    "id": competitor.id,
                    "name": competitor.name,
                    "success": outcome.get("from_cache", False) or any(s["success"] for s in outcome["sources"]),
                    "from_cache": outcome.get("from_cache", False),
                    "sources": [{"name": s["name"], "success": s["success"]} for s in outcome["sources"]],
                })
            except Exception as e:
                db.rollback()
                logger.error(f"[REFRESH] Error refreshing competitor {competitor.name}: {e}")
                summaries.append({
                    "id": competitor.id,
                    "name": competitor.name or f"Competitor ID: {competitor.id}",
                    "success": False,
                    "from_cache": False,
                    "sources": [],
                })
        return summaries

    def refresh_single_product(self, db: Session, product_id: str, force_refresh: bool = False,
                               sources: Optional[list[str]] = None) -> dict:
        product = db.get(Product, product_id)
        if product is None:
            return {
                "sources": [{
                    "name": "database",
                    "success": False,
                    "message": "Product not found",
                    "error": "Product not found",
                }],
                "errors": 1,
            }

        if not needs_refresh(product, force_refresh):
            return {
                "sources": [],
                "errors": 0,
                "from_cache": True,
                "message": f"Using cached reviews (less than {STALENESS_DAYS} days old)",
                "cache_date": as_utc(product.last_reviews_scraped_at).isoformat(),
            }

        targets = configured_sources(product)
        if sources is not None:
            targets = {name: ident for name, ident in targets.items() if name in sources}

        if not targets:
            return {
                "sources": [{
                    "name": "configuration",
                    "success": False,
                    "message": "No review sources configured for this product",
                    "error": "Missing URL or ASIN",
                }],
                "errors": 1,
            }

        source_results = [
            self._trigger_scrape(db, product, name, identifier) for name, identifier in targets.items()
        ]
        errors = sum(1 for r in source_results if not r["success"])

        if errors < len(source_results):
            product.last_reviews_scraped_at = utcnow()
            db.commit()

        return {"sources": source_results, "errors": errors}

    def _trigger_scrape(self, db: Session, product: Product, source: str, identifier: str) -> dict:
        status = scrape_jobs.get_status(db, source, identifier)
        if status["is_running"]:
            return {
                "name": source,
                "success": False,
                "message": "Scrape already in progress",
                "error": f"A scraping job for this {source} source is already running",
                "job_id": status["job"].id,
            }

        if source == "amazon":
            actor_id = self.settings.amazon_actor_id
            run_input = amazon_run_input(identifier, product.id)
        else:
            actor_id = self.settings.trustpilot_actor_id
            run_input = trustpilot_run_input(identifier, product.id)

        try:
            run = self.scrape_client.start_actor_run(actor_id, run_input, webhook_url=self.settings.webhook_url)
        except ScrapeClientError as e:
            logger.error(f"[REFRESH] Error running {source} scraper: {e}")
            return {"name": source, "success": False, "message": "Scraper encountered an error", "error": str(e)}

        created = scrape_jobs.create_job(db, product.id, source, identifier, actor_run_id=run.get("id"))
        if not created["success"]:
            return {
                "name": source,
                "success": False,
                "message": "Could not record scraping job",
                "error": created["error"],
            }

        logger.info(f"[REFRESH] Started {source} scrape for {product.name} ({identifier})")
        return {
            "name": source,
            "success": True,
            "message": "Scrape started",
            "run_id": run.get("id"),
            "job_id": created["job_id"],
        }
