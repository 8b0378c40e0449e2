import io
import logging

from langchain_text_splitters import RecursiveCharacterTextSplitter
from pypdf import PdfReader

from config import CHUNK_OVERLAP, CHUNK_SIZE
from models.schemas import DocumentResource
from services.vector_index import IndexScope, VectorIndexWriter

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def extract_text(file_bytes: bytes, file_name: str) -> str:
    """Plain text for uploads; PDFs are parsed page by page."""
    if file_name.lower().endswith(".pdf"):
        pdf = PdfReader(io.BytesIO(file_bytes))
        text = "".join(page.extract_text() or "" for page in pdf.pages)
        return text.replace('\x00', '')
    return file_bytes.decode("utf-8", errors="replace")


def index_document_file(writer: VectorIndexWriter, file_bytes: bytes, resource: DocumentResource) -> dict:
    """Replace the indexed content of one marketing resource."""
    logger.info(f"[INDEX] Starting to index document: {resource.file_name} for product: {resource.product_name}")

    try:
        text = extract_text(file_bytes, resource.file_name)
    except Exception as e:
        logger.error(f"[INDEX] Could not read {resource.file_name}: {e}")
        return {"success": False, "error": f"Could not read file: {e}"}

    splitter = RecursiveCharacterTextSplitter(
        chunk_size=CHUNK_SIZE,
        chunk_overlap=CHUNK_OVERLAP
    )
    base_metadata = {
        "resource_id": resource.resource_id,
        "product_id": resource.product_id,
        "product_name": resource.product_name,
        "resource_type": resource.resource_type,
        "title": resource.title,
        "description": resource.description or "",
        "is_competitor": resource.is_competitor,
        "competitor_name": resource.competitor_name or "",
        "file_name": resource.file_name,
        "source": "document",
    }
    documents = splitter.create_documents(texts=[text], metadatas=[base_metadata]) if text.strip() else []
    for chunk_index, doc in enumerate(documents):
        doc.metadata = {**doc.metadata, "chunk_index": chunk_index}

    result = writer.reindex_scope(
        IndexScope(resource_id=resource.resource_id), documents, product_id=resource.product_id
    )
    if not result["success"]:
        return result

    logger.info(f"[INDEX] Successfully indexed document {resource.file_name}")
    return {"success": True, "chunks": result["chunk_count"]}
