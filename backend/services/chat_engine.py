import itertools
import logging
from typing import Callable, Iterable, Iterator, Optional

from langchain_core.output_parsers import StrOutputParser
from langchain_core.prompts import ChatPromptTemplate
from langchain_openai import ChatOpenAI

from config import LLM_MODEL, LLM_TEMPERATURE, RETRIEVAL_TOP_K

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

SYSTEM_PROMPT = """You are an AI assistant for a Creative Strategist, specializing in analyzing product and brand reviews.
Use the retrieved reviews and documents below to extract insights: trends, customer sentiment, common praise and pain points.
Keep responses concise, data-driven and relevant to brand positioning, marketing and creative direction.
If the context doesn't contain the answer, say so. If a request falls outside this scope, politely steer back to it.

Context:
{context}"""


ROLE_LABELS = {"user": "User", "assistant": "Assistant"}


class ChatEngineError(Exception):
    pass


def create_llm(model: str = LLM_MODEL, temperature: float = LLM_TEMPERATURE,
               api_key: Optional[str] = None) -> ChatOpenAI:
    if api_key:
        return ChatOpenAI(model=model, temperature=temperature, api_key=api_key)
    return ChatOpenAI(model=model, temperature=temperature)


def serialize_conversation(message: str, history: Iterable[dict], instructions: Optional[str] = None) -> str:
    """
    Flatten prior turns plus the new message into a single prompt string.

    The chain takes one human message per call, so multi-turn context has to
    travel inside it. System turns are dropped; instructions go through
    `instructions` instead.
    """
    lines = []
    for turn in history:
        role = ROLE_LABELS.get(turn["role"])
        if role is None:
            continue
        lines.append(f"{role}: {turn['content']}")

    parts = []
    if lines:
        parts.append("Conversation so far:\n" + "\n".join(lines))
    if instructions:
        parts.append(f"Additional instructions:\n{instructions}")
    parts.append(f"User: {message}\nAssistant:")
    return "\n\n".join(parts)


class ChatStream:
    """
    Token iterator for a streamed answer.

    `on_complete` receives the assembled text only once the stream has been
    fully consumed; a consumer that stops early leaves it uncalled.
    """

    def __init__(self, tokens: Iterator[str], source_nodes: list[dict],
                 on_complete: Optional[Callable[[str], None]] = None):
        self._tokens = tokens
        self.source_nodes = source_nodes
        self.on_complete = on_complete
        self.text: Optional[str] = None

    def __iter__(self):
        parts = []
        try:
            for token in self._tokens:
                parts.append(token)
                yield token
        except Exception as e:
            logger.error(f"[RAG] Stream failed after {len(parts)} tokens: {e}")
            raise ChatEngineError(str(e)) from e

        self.text = "".join(parts)
        if self.on_complete:
            self.on_complete(self.text)


class ChatEngine:
    """Retrieval-augmented chat over the shared review/document index."""

    def __init__(self, llm, vector_store, product_id: Optional[str] = None, top_k: int = RETRIEVAL_TOP_K,
                 system_prompt: str = SYSTEM_PROMPT):
        self.llm = llm
        self.vector_store = vector_store
        self.product_id = product_id
        self.top_k = top_k
        self.prompt = ChatPromptTemplate.from_messages([
            ("system", system_prompt),
            ("human", "{conversation}"),
        ])

    def retrieve(self, query: str) -> list[dict]:
        logger.info(f"[RAG] Retrieving top {self.top_k} chunks for product {self.product_id}")
        try:
            results = self.vector_store.similarity_search(query, k=self.top_k, product_id=self.product_id)
        except Exception as e:
            logger.error(f"[RAG] Retrieval failed: {e}")
            raise ChatEngineError(f"Retrieval failed: {e}") from e

        logger.info(f"[RAG] Found {len(results)} similar chunks")
        return [
            {"text": doc.page_content, "metadata": doc.metadata, "score": round(score, 3)}
            for doc, score in results
        ]

    def chat(self, message: str, history: Iterable[dict] = (), stream: bool = False,
             instructions: Optional[str] = None, on_complete: Optional[Callable[[str], None]] = None):
        """
        Answer `message` grounded in retrieved chunks.

        Returns {"text", "source_nodes"} or, with stream=True, a ChatStream.
        """
        source_nodes = self.retrieve(message)
        context = "\n\n".join(node["text"] for node in source_nodes)
        inputs = {
            "context": context,
            "conversation": serialize_conversation(message, history, instructions),
        }
        chain = self.prompt | self.llm | StrOutputParser()

        if stream:
            return ChatStream(self._start_stream(chain, inputs), source_nodes, on_complete)

        logger.info(f"[RAG] Generating answer with LLM")
        try:
            text = chain.invoke(inputs)
        except Exception as e:
            logger.error(f"[RAG] LLM call failed: {e}")
            raise ChatEngineError(f"LLM call failed: {e}") from e

        if on_complete:
            on_complete(text)
        return {"text": text, "source_nodes": source_nodes}

    def _start_stream(self, chain, inputs: dict) -> Iterator[str]:
        # The model is only called once the stream is pulled; pull the first
        # chunk now so a failed call raises before any response is sent.
        logger.info(f"[RAG] Streaming answer with LLM")
        try:
            tokens = iter(chain.stream(inputs))
            first = next(tokens, None)
        except Exception as e:
            logger.error(f"[RAG] LLM call failed: {e}")
            raise ChatEngineError(f"LLM call failed: {e}") from e

        if first is None:
            return iter(())
        return itertools.chain([first], tokens)
