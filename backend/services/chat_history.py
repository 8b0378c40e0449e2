import logging
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from models.base import utcnow
from models.chat import ChatMessage, ChatSession
from models.reviews import Product

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def create_session(db: Session, product_id: str, session_type: str = "general",
                   title: Optional[str] = None) -> ChatSession:
    if not title:
        product = db.get(Product, product_id)
        title = f"Chat about {product.name}" if product else "New chat session"

    session = ChatSession(product_id=product_id, session_type=session_type, title=title)
    db.add(session)
    db.commit()
    return session


def save_message(db: Session, session_id: str, role: str, content: str,
                 metadata: Optional[dict] = None) -> ChatMessage:
    message = ChatMessage(session_id=session_id, role=role, content=content, message_metadata=metadata)
    db.add(message)
    db.commit()
    logger.info(f"[CHAT] Saved {role} message {message.id} for session {session_id} ({len(content)} chars)")
    return message


def touch_session(db: Session, session_id: str):
    """Bump updated_at so the session sorts as recently active."""
    db.execute(update(ChatSession).where(ChatSession.id == session_id).values(updated_at=utcnow()))
    db.commit()


def get_messages(db: Session, session_id: str) -> list[ChatMessage]:
    return list(db.execute(
        select(ChatMessage)
        .where(ChatMessage.session_id == session_id)
        .order_by(ChatMessage.created_at.asc())
    ).scalars().all())


def get_product_sessions(db: Session, product_id: str) -> list[ChatSession]:
    return list(db.execute(
        select(ChatSession)
        .where(ChatSession.product_id == product_id)
        .order_by(ChatSession.updated_at.desc())
    ).scalars().all())
