import itertools
from datetime import timedelta

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

import database  # noqa: F401  (registers every table on Base.metadata)
from config import Settings
from models.base import Base, utcnow
from models.reviews import Product, ProductCompetitor
from models.schemas import Review
from services.apify_client import ScrapeClientError
from services.reviews_indexer import ReviewsIndexer
from services.vector_index import VectorIndexWriter

# pgvector columns need PostgreSQL; everything relational runs on SQLite.
RELATIONAL_TABLES = [table for name, table in Base.metadata.tables.items() if name != "indexed_chunks"]


class FakeVectorStore:
    """In-memory stand-in for PgVectorStore with the same scope semantics."""

    def __init__(self):
        self.documents = []
        self.searches = []
        self.fail_on_add = False
        self.fail_on_search = False

    def delete(self, scope):
        before = len(self.documents)
        self.documents = [doc for doc in self.documents if not scope.matches(doc.metadata)]
        return before - len(self.documents)

    def add_documents(self, documents):
        if self.fail_on_add:
            raise RuntimeError("embedding service unavailable")
        self.documents.extend(documents)
        return len(documents)

    def similarity_search(self, query, k, product_id=None):
        if self.fail_on_search:
            raise RuntimeError("vector store unavailable")
        self.searches.append({"query": query, "k": k, "product_id": product_id})
        matching = [
            doc for doc in self.documents
            if product_id is None or doc.metadata.get("product_id") == product_id
        ]
        return [(doc, 0.9) for doc in matching[:k]]


class FakeApifyClient:
    """Records started runs and serves canned datasets / INPUT records."""

    def __init__(self):
        self.started = []
        self.datasets = {}
        self.records = {}
        self.fail_start = False
        self._run_numbers = itertools.count(1)

    def start_actor_run(self, actor_id, run_input, webhook_url=None):
        if self.fail_start:
            raise ScrapeClientError("POST /acts/x/runs failed: 503 Service Unavailable")
        number = next(self._run_numbers)
        run = {
            "id": f"run-{number}",
            "actId": actor_id,
            "defaultDatasetId": f"dataset-{number}",
            "defaultKeyValueStoreId": f"store-{number}",
        }
        self.started.append({"actor_id": actor_id, "run_input": run_input, "webhook_url": webhook_url, "run": run})
        return run

    def list_dataset_items(self, dataset_id):
        return list(self.datasets.get(dataset_id, []))

    def get_record(self, store_id, key="INPUT"):
        return self.records.get(store_id)


@pytest.fixture
def engine(tmp_path):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'reviews.db'}",
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(bind=engine, tables=RELATIONAL_TABLES)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def settings():
    return Settings(
        database_url="sqlite://",
        apify_api_token="test-token",
        apify_webhook_secret="test-secret",
        webhook_url="https://reviews.example.test/webhooks/apify",
    )


@pytest.fixture
def vector_store():
    return FakeVectorStore()


@pytest.fixture
def writer(vector_store, session_factory):
    return VectorIndexWriter(vector_store, session_factory)


@pytest.fixture
def indexer(writer):
    return ReviewsIndexer(writer)


@pytest.fixture
def scrape_client():
    return FakeApifyClient()


@pytest.fixture
def make_product(db):
    """Factory for products; pass scraped_days_ago to mark reviews as already fetched."""

    def _make(name="Acme Widget", url="acme.example", asin="B000TEST01", scraped_days_ago=None):
        metadata = {}
        if url:
            metadata["url"] = url
        if asin:
            metadata["amazon_asin"] = asin
        product = Product(name=name, metadata_=metadata)
        if scraped_days_ago is not None:
            product.last_reviews_scraped_at = utcnow() - timedelta(days=scraped_days_ago)
        db.add(product)
        db.commit()
        return product

    return _make


@pytest.fixture
def product(make_product):
    return make_product()


@pytest.fixture
def link_competitor(db):
    def _link(product, competitor):
        db.add(ProductCompetitor(product_id=product.id, competitor_product_id=competitor.id))
        db.commit()

    return _link


@pytest.fixture
def make_review():
    """Factory for canonical reviews."""
    counter = itertools.count(1)

    def _make(product_id="product-1", source="amazon", product_source="B000TEST01", **overrides):
        number = next(counter)
        values = {
            "id": f"{source}-review-{number}",
            "product_id": product_id,
            "text": f"Review number {number} says the widget works well.",
            "title": f"Review {number}",
            "rating": 4.0,
            "source": source,
            "date": "2024-04-29",
            "reviewer_name": "Ann",
            "verified": True,
            "product_source": product_source,
        }
        values.update(overrides)
        return Review(**values)

    return _make
