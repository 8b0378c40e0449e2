import logging
from datetime import datetime, timedelta

from langchain_core.prompts import ChatPromptTemplate
from sqlalchemy.orm import Session

from config import INSIGHTS_CACHE_HOURS, INSIGHTS_TOP_K, SUMMARY_CACHE_DAYS
from models.base import as_utc, utcnow
from models.reviews import Product
from models.schemas import ProductInsights
from services.chat_engine import ChatEngine

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

INSIGHTS_PROMPT = """You are an expert marketing analyst. Analyze the product reviews below and produce
structured marketing insights: benefits (with frequency and example quotes), pain points, valued
features, prior objections, failed solutions, emotional triggers, five distinct customer personas,
headlines, competitive positioning angles, trigger events, objection responses and hooks.
Quote customers verbatim in examples.

Product: {product_name}

Reviews:
{context}"""

SUMMARY_PROMPT = (
    "Summarize what customers say about this product: who buys it, why, what they love, "
    "what frustrates them, and how it compares to alternatives they mention."
)


def _is_fresh(timestamp: str | None, max_age: timedelta) -> bool:
    if not timestamp:
        return False
    try:
        generated_at = as_utc(datetime.fromisoformat(timestamp))
    except ValueError:
        return False
    return utcnow() - generated_at < max_age


def generate_product_insights(db: Session, product_id: str, llm, vector_store, force: bool = False) -> dict:
    """Structured insights for a product, cached in its metadata for a day."""
    logger.info(f"[INSIGHTS] Generating insights for product: {product_id}")

    product = db.get(Product, product_id)
    if product is None:
        return {"success": False, "error": "Product not found"}

    metadata = dict(product.metadata_ or {})
    if not force and metadata.get("insights") and _is_fresh(
        metadata.get("insights_generated_at"), timedelta(hours=INSIGHTS_CACHE_HOURS)
    ):
        logger.info(f"[INSIGHTS] Using cached insights for {product.name}")
        return {"success": True, "insights": metadata["insights"], "cached": True}

    try:
        results = vector_store.similarity_search(
            f"customer reviews of {product.name}", k=INSIGHTS_TOP_K, product_id=product_id
        )
        if not results:
            return {"success": False, "error": "No indexed reviews for this product"}

        context = "\n\n".join(doc.page_content for doc, _ in results)
        prompt = ChatPromptTemplate.from_messages([("human", INSIGHTS_PROMPT)])
        chain = prompt | llm.with_structured_output(ProductInsights)
        insights: ProductInsights = chain.invoke({"product_name": product.name, "context": context})
    except Exception as e:
        logger.error(f"[INSIGHTS] Error generating insights for {product_id}: {e}")
        return {"success": False, "error": str(e)}

    metadata["insights"] = insights.model_dump()
    metadata["insights_generated_at"] = utcnow().isoformat()
    product.metadata_ = metadata
    db.commit()

    return {"success": True, "insights": metadata["insights"], "cached": False}


def generate_product_summary(db: Session, product_id: str, llm, vector_store) -> dict:
    """Prose summary through the chat engine, cached for a week."""
    product = db.get(Product, product_id)
    if product is None:
        return {"success": False, "error": "Product not found"}

    metadata = dict(product.metadata_ or {})
    if metadata.get("summary") and _is_fresh(
        metadata.get("summary_generated_at"), timedelta(days=SUMMARY_CACHE_DAYS)
    ):
        return {"success": True, "summary": metadata["summary"], "cached": True}

    engine = ChatEngine(llm, vector_store, product_id=product_id)
    try:
        response = engine.chat(SUMMARY_PROMPT)
    except Exception as e:
        logger.error(f"[INSIGHTS] Error generating product summary: {e}")
        return {"success": False, "error": str(e)}

    metadata["summary"] = response["text"]
    metadata["summary_generated_at"] = utcnow().isoformat()
    product.metadata_ = metadata
    db.commit()

    return {"success": True, "summary": response["text"], "cached": False}
