import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI, File, Form, HTTPException, Request, UploadFile
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from sqlalchemy.orm import Session

from config import Settings, get_settings
from database import get_db, get_session_factory, init_db
from models.reviews import Product
from models.schemas import (
    ChatRequest, ChatResponse, CreateSessionRequest, DocumentResource, RefreshRequest, ScrapingJobOut
)
from services import chat_history, scrape_jobs
from services.apify_client import ApifyClient
from services.chat_engine import ChatEngine, ChatEngineError, create_llm
from services.document_indexer import index_document_file
from services.insights import generate_product_insights, generate_product_summary
from services.review_refresh import ReviewRefreshOrchestrator
from services.reviews_indexer import ReviewsIndexer
from services.vector_index import PgVectorStore, VectorIndexWriter, create_embeddings
from services.webhook_controller import WebhookController

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    yield


app = FastAPI(title="Review Insights API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# --- dependencies ---

def get_vector_store(session_factory=Depends(get_session_factory), settings: Settings = Depends(get_settings)):
    return PgVectorStore(session_factory, create_embeddings(settings.openai_api_key))


def get_scrape_client(settings: Settings = Depends(get_settings)):
    return ApifyClient(settings)


def get_llm(settings: Settings = Depends(get_settings)):
    return create_llm(api_key=settings.openai_api_key)


def get_writer(store=Depends(get_vector_store), session_factory=Depends(get_session_factory)):
    return VectorIndexWriter(store, session_factory)


def get_reviews_indexer(writer: VectorIndexWriter = Depends(get_writer)):
    return ReviewsIndexer(writer)


def get_webhook_controller(
    settings: Settings = Depends(get_settings),
    scrape_client=Depends(get_scrape_client),
    session_factory=Depends(get_session_factory),
    indexer: ReviewsIndexer = Depends(get_reviews_indexer),
):
    return WebhookController(settings, scrape_client, session_factory, indexer)


def get_refresh_orchestrator(
    settings: Settings = Depends(get_settings),
    scrape_client=Depends(get_scrape_client),
    session_factory=Depends(get_session_factory),
):
    return ReviewRefreshOrchestrator(settings, scrape_client, session_factory)


# --- webhooks ---

@app.post("/webhooks/apify")
async def apify_webhook(request: Request, controller: WebhookController = Depends(get_webhook_controller)):
    raw_body = await request.body()
    signature = request.headers.get("x-webhook-signature") or request.headers.get("x-apify-webhook-signature")
    result = await run_in_threadpool(controller.handle, raw_body, signature)
    return JSONResponse(result.body, status_code=result.status_code)


# --- chat ---

@app.post("/chat", response_model=ChatResponse)
def chat(
    request: ChatRequest,
    db: Session = Depends(get_db),
    session_factory=Depends(get_session_factory),
    llm=Depends(get_llm),
    store=Depends(get_vector_store),
):
    """
    Answer the latest user message about a product, grounded in its indexed
    reviews. Streams plain-text tokens unless `stream` is false.
    """
    if not request.messages:
        raise HTTPException(status_code=400, detail="Messages are required and must be a non-empty list")

    last_user_index = next(
        (i for i in range(len(request.messages) - 1, -1, -1) if request.messages[i].role == "user"), None
    )
    if last_user_index is None:
        raise HTTPException(status_code=400, detail="No user message found")

    message = request.messages[last_user_index].content
    history = [m.model_dump() for m in request.messages[:last_user_index]]
    hidden_prompt = request.metadata.hidden_prompt if request.metadata else None

    if db.get(Product, request.product_id) is None:
        raise HTTPException(status_code=404, detail="Product not found")

    session_id = request.session_id
    engine = ChatEngine(llm, store, product_id=request.product_id)

    def persist(text: str, sources: list[dict]):
        if not session_id:
            return
        persist_db = session_factory()
        try:
            chat_history.save_message(
                persist_db, session_id, "assistant", text,
                metadata={"sources": [node["metadata"] for node in sources]},
            )
            chat_history.touch_session(persist_db, session_id)
        except Exception as e:
            logger.error(f"[CHAT] Failed to persist assistant message for session {session_id}: {e}")
        finally:
            persist_db.close()

    try:
        if not request.stream:
            result = engine.chat(message, history, instructions=hidden_prompt)
            persist(result["text"], result["source_nodes"])
            return ChatResponse(**result)

        stream = engine.chat(message, history, stream=True, instructions=hidden_prompt)
    except ChatEngineError as e:
        logger.error(f"[CHAT] {e}")
        return JSONResponse({"error": "Error generating response", "detail": str(e)}, status_code=500)

    stream.on_complete = lambda text: persist(text, stream.source_nodes)

    def token_stream():
        # Status and headers are already sent; a failure past the first token can only end the body.
        try:
            yield from stream
        except ChatEngineError as e:
            logger.error(f"[CHAT] Stream aborted: {e}")

    return StreamingResponse(token_stream(), media_type="text/plain; charset=utf-8")


@app.post("/chat/sessions")
def create_chat_session(request: CreateSessionRequest, db: Session = Depends(get_db)):
    if db.get(Product, request.product_id) is None:
        raise HTTPException(status_code=404, detail="Product not found")
    session = chat_history.create_session(db, request.product_id, request.session_type, request.title)
    return {"id": session.id, "title": session.title, "product_id": session.product_id}


@app.get("/chat/sessions/{session_id}/messages")
def get_chat_messages(session_id: str, db: Session = Depends(get_db)):
    return [
        {"id": m.id, "role": m.role, "content": m.content, "metadata": m.message_metadata,
         "created_at": m.created_at}
        for m in chat_history.get_messages(db, session_id)
    ]


@app.get("/products/{product_id}/chat-sessions")
def get_product_chat_sessions(product_id: str, db: Session = Depends(get_db)):
    return [
        {"id": s.id, "title": s.title, "session_type": s.session_type, "updated_at": s.updated_at}
        for s in chat_history.get_product_sessions(db, product_id)
    ]


# --- reviews ---

@app.post("/products/{product_id}/refresh")
def refresh_reviews(
    product_id: str,
    request: RefreshRequest,
    orchestrator: ReviewRefreshOrchestrator = Depends(get_refresh_orchestrator),
):
    return orchestrator.refresh_all_reviews(
        product_id,
        force_refresh=request.force_refresh,
        include_competitors=request.include_competitors,
        sources=request.sources,
    )


@app.post("/products/{product_id}/index")
def index_reviews(
    product_id: str,
    db: Session = Depends(get_db),
    indexer: ReviewsIndexer = Depends(get_reviews_indexer),
):
    result = indexer.reindex_product(db, product_id)
    if not result["success"]:
        raise HTTPException(status_code=400, detail=result["error"])
    return result


@app.get("/products/{product_id}/scraping-jobs", response_model=list[ScrapingJobOut])
def list_scraping_jobs(product_id: str, db: Session = Depends(get_db)):
    return scrape_jobs.get_jobs_for_product(db, product_id)


@app.get("/scraping-jobs/status")
def scraping_job_status(source: str, source_identifier: str, db: Session = Depends(get_db)):
    status = scrape_jobs.get_status(db, source, source_identifier)
    job = status["job"]
    return {
        "is_running": status["is_running"],
        "status": status["status"],
        "job": ScrapingJobOut.model_validate(job).model_dump() if job else None,
    }


@app.post("/products/{product_id}/resources/{resource_id}/index")
def index_resource(
    product_id: str,
    resource_id: str,
    file: UploadFile = File(...),
    title: str = Form(...),
    resource_type: str = Form("document"),
    description: Optional[str] = Form(None),
    is_competitor: bool = Form(False),
    competitor_name: Optional[str] = Form(None),
    db: Session = Depends(get_db),
    writer: VectorIndexWriter = Depends(get_writer),
):
    product = db.get(Product, product_id)
    if product is None:
        raise HTTPException(status_code=404, detail="Product not found")

    resource = DocumentResource(
        resource_id=resource_id,
        product_id=product_id,
        product_name=product.name,
        resource_type=resource_type,
        title=title,
        description=description,
        is_competitor=is_competitor,
        competitor_name=competitor_name,
        file_name=file.filename or resource_id,
    )
    result = index_document_file(writer, file.file.read(), resource)
    if not result["success"]:
        raise HTTPException(status_code=500, detail=result["error"])
    return result


# --- insights ---

@app.get("/products/{product_id}/insights")
def product_insights(
    product_id: str,
    force: bool = False,
    db: Session = Depends(get_db),
    llm=Depends(get_llm),
    store=Depends(get_vector_store),
):
    result = generate_product_insights(db, product_id, llm, store, force=force)
    if not result["success"]:
        raise HTTPException(status_code=500, detail=result["error"])
    return result


@app.post("/products/{product_id}/summary")
def product_summary(
    product_id: str,
    db: Session = Depends(get_db),
    llm=Depends(get_llm),
    store=Depends(get_vector_store),
):
    result = generate_product_summary(db, product_id, llm, store)
    if not result["success"]:
        raise HTTPException(status_code=500, detail=result["error"])
    return result


@app.get("/health")
async def health():
    return {"status": "ok"}


if __name__ == "__main__":
    import uvicorn
    import os
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
