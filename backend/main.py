"""
FastAPI Backend for the Socratic Theorem Tutor

Thin transport over the tutoring engine:
- Chat, blocking and SSE streaming
- In-memory session history inspection and clearing
- Knowledge base browsing and search
"""

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel
from typing import Optional, List, Dict, Any
import os
import sys
import json
import time
from datetime import datetime as dt
import logging

from lib.logger import setup_logging, get_logger
from lib.images import ImageLoadError, encode_images

setup_logging(level=logging.INFO, use_colors=True)

logger = get_logger("backend.main")

# Add the socratic_theorem_tutor package to Python path
backend_dir = os.path.dirname(os.path.abspath(__file__))
project_root = os.path.dirname(backend_dir)
package_src = os.path.join(project_root, 'socratic_theorem_tutor', 'src')
if os.path.exists(package_src) and package_src not in sys.path:
    sys.path.insert(0, package_src)

from socratic_theorem_tutor.config import get_settings
from socratic_theorem_tutor.errors import GenerationFailure
from socratic_theorem_tutor.knowledge_entry import DIFFICULTY_ALIASES, Category, Difficulty
from socratic_theorem_tutor.session_history import Message
from socratic_theorem_tutor.socratic_tutor import SocraticTutor, TutorTurn

# Default data locations when running from a checkout
os.environ.setdefault("KNOWLEDGE_DIR", os.path.join(project_root, "data", "knowledge"))
os.environ.setdefault("PUBLIC_DIR", os.path.join(project_root, "public"))

# Singleton pattern for SocraticTutor to avoid reloading the corpus on every request
_tutor_instance: Optional[SocraticTutor] = None


def get_tutor_instance() -> SocraticTutor:
    """Get or create singleton SocraticTutor instance."""
    global _tutor_instance
    if _tutor_instance is None:
        _tutor_instance = SocraticTutor()
    return _tutor_instance


app = FastAPI(
    title="Socratic Theorem Tutor API",
    description="Retrieval-grounded Socratic tutoring over a curated theorem knowledge base",
    version="1.0.0"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ==================== Pydantic Models ====================

class ChatRequest(BaseModel):
    message: str = ""
    session_id: Optional[str] = None
    images: List[str] = []
    category: Optional[str] = None
    conversation_history: Optional[List[Dict[str, Any]]] = None
    api_key: Optional[str] = None


class ChatResponse(BaseModel):
    response: str
    related_theorems: List[Dict[str, Any]]
    socratic_questions: List[str]
    session_id: str


class SearchRequest(BaseModel):
    query: str = ""
    category: Optional[str] = None
    limit: int = 5


# ==================== Errors ====================

class ApiError(Exception):
    """Error rendered with the standard failure envelope."""

    def __init__(self, status_code: int, code: str, message: str):
        self.status_code = status_code
        self.code = code
        self.message = message
        super().__init__(message)


@app.exception_handler(ApiError)
async def api_error_handler(request: Request, exc: ApiError):
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "error": {"code": exc.code, "message": exc.message}}
    )


@app.exception_handler(GenerationFailure)
async def generation_failure_handler(request: Request, exc: GenerationFailure):
    logger.error("Generation failed", error=exc, data={"path": request.url.path, "retryable": exc.retryable})
    return JSONResponse(
        status_code=503 if exc.retryable else 502,
        content={
            "success": False,
            "error": {"code": "GENERATION_FAILED", "message": str(exc), "retryable": exc.retryable}
        }
    )


def ok(data: Any) -> Dict[str, Any]:
    return {"success": True, "data": data}


# ==================== Helpers ====================

def parse_category(raw: Optional[str]) -> Optional[Category]:
    if not raw:
        return None
    category = Category.parse(raw)
    if category is None:
        raise ApiError(400, "VALIDATION_ERROR", f"Unknown category: {raw}")
    return category


def parse_difficulty(raw: Optional[str]) -> Optional[Difficulty]:
    if not raw:
        return None
    difficulty = DIFFICULTY_ALIASES.get(raw.strip().lower())
    if difficulty is None:
        raise ApiError(400, "VALIDATION_ERROR", f"Unknown difficulty: {raw}")
    return difficulty


def build_turn(request: ChatRequest) -> TutorTurn:
    """Validate a chat request and turn it into a TutorTurn."""
    if not request.message.strip() and not request.images:
        raise ApiError(400, "VALIDATION_ERROR", "消息内容不能为空")

    try:
        images = tuple(encode_images(request.images))
    except ImageLoadError as e:
        logger.warning("Image reference rejected", data={"images": len(request.images), "reason": str(e)})
        raise ApiError(400, "IMAGE_ERROR", str(e))

    history = None
    if request.conversation_history is not None:
        try:
            history = tuple(Message.from_dict(item) for item in request.conversation_history)
        except (TypeError, ValueError) as e:
            raise ApiError(400, "VALIDATION_ERROR", f"Invalid conversation history: {e}")

    return TutorTurn(
        message=request.message,
        session_id=request.session_id or f"session_{dt.now().timestamp()}",
        images=images,
        category=parse_category(request.category),
        history=history,
        api_key=request.api_key or None,
    )


def sse(payload: Dict[str, Any]) -> str:
    return f"data: {json.dumps(payload, ensure_ascii=False)}\n\n"


# ==================== Chat ====================

@app.get("/")
async def root():
    """Health check endpoint."""
    tutor = get_tutor_instance()
    return {
        "status": "ok",
        "service": "Socratic Theorem Tutor API",
        "version": "1.0.0",
        "knowledge_entries": len(tutor.store),
        "active_sessions": len(tutor.list_session_ids()),
    }


@app.post("/api/chat", response_model=ChatResponse)
async def chat(request: ChatRequest):
    """Blocking chat turn."""
    turn = build_turn(request)
    start_time = time.time()
    logger.request("POST", "/api/chat", session_id=turn.session_id, data={
        "message_length": len(turn.message),
        "images": len(turn.images),
    })

    answer = await get_tutor_instance().answer(turn)

    logger.response(200, "/api/chat", duration=time.time() - start_time, data={
        "response_length": len(answer.response),
        "related": [result.entry.id for result in answer.related_entries],
    })
    return ChatResponse(session_id=turn.session_id, **answer.to_dict())


@app.post("/api/chat/stream")
async def chat_stream(request: ChatRequest):
    """
    Stream chat response in real-time with SSE.

    Each fragment is sent as a "chunk" event; the stream ends with a
    "done" event, or an "error" event when generation fails.
    """
    turn = build_turn(request)
    tutor = get_tutor_instance()

    async def generate():
        start_time = time.time()
        logger.request("POST", "/api/chat/stream", session_id=turn.session_id, data={
            "message_length": len(turn.message),
            "images": len(turn.images),
        })
        chunk_count = 0
        stream = tutor.answer_stream(turn)
        logger.subsection("Streaming response", data={"session_id": turn.session_id[:20]})
        try:
            async for chunk in stream:
                if chunk:
                    chunk_count += 1
                    yield sse({"type": "chunk", "content": chunk, "done": False})
        except GenerationFailure as e:
            logger.error("Error in chat_stream", error=e, data={
                "session_id": turn.session_id[:20],
                "chunks_sent": chunk_count,
            })
            yield sse({"type": "error", "content": f"Error: {e}", "retryable": e.retryable, "done": True})
            return
        finally:
            await stream.aclose()

        logger.success("Response streamed", data={
            "total_chunks": chunk_count,
            "duration_ms": f"{(time.time() - start_time) * 1000:.2f}",
        })
        yield sse({"type": "done", "session_id": turn.session_id, "done": True})

    return StreamingResponse(generate(), media_type="text/event-stream")


@app.get("/api/chat/sessions")
async def list_sessions():
    return ok(get_tutor_instance().list_session_ids())


@app.get("/api/chat/sessions/{session_id}")
async def get_session_messages(session_id: str):
    """Stored history for a session (empty for unknown sessions)."""
    messages = get_tutor_instance().get_history(session_id)
    return ok([message.to_dict() for message in messages])


@app.delete("/api/chat/sessions/{session_id}")
async def delete_session(session_id: str):
    get_tutor_instance().clear_session(session_id)
    return ok({"status": "deleted", "session_id": session_id})


# ==================== Knowledge ====================

@app.get("/api/knowledge")
async def query_knowledge(
    category: Optional[str] = None,
    topic: Optional[str] = None,
    difficulty: Optional[str] = None,
    search: Optional[str] = None,
    limit: Optional[int] = None
):
    """Browse the knowledge base with optional filters."""
    entries = get_tutor_instance().store.query(
        category=parse_category(category),
        topic=topic,
        difficulty=parse_difficulty(difficulty),
        search=search,
        limit=limit,
    )
    return ok([entry.to_dict() for entry in entries])


@app.post("/api/knowledge/search")
async def search_knowledge(request: SearchRequest):
    """Relevance-ranked search (semantic, or lexical when embeddings are down)."""
    if not request.query.strip():
        raise ApiError(400, "VALIDATION_ERROR", "搜索查询不能为空")
    logger.debug("Knowledge search", data={
        "query": request.query[:50],
        "category": request.category,
        "limit": request.limit,
    })
    results = await get_tutor_instance().retrieve(
        request.query,
        k=request.limit,
        category=parse_category(request.category),
    )
    return ok([dict(result.summary(), method=result.method) for result in results])


@app.get("/api/knowledge/categories/list")
async def list_categories():
    categories = get_tutor_instance().store.list_categories()
    return ok([{"id": category.value, "name": category.subject_name} for category in categories])


@app.get("/api/knowledge/topics/{category}")
async def list_topics(category: str):
    return ok(get_tutor_instance().store.list_topics(parse_category(category)))


@app.get("/api/knowledge/{entry_id}")
async def get_entry(entry_id: str):
    entry = get_tutor_instance().store.get(entry_id)
    if entry is None:
        raise ApiError(404, "NOT_FOUND", "未找到指定的定理")
    return ok(entry.to_dict())


@app.on_event("startup")
async def startup_event():
    """Load the knowledge base eagerly so a bad corpus fails at startup."""
    logger.section("Socratic Theorem Tutor startup", data={"knowledge_dir": os.environ["KNOWLEDGE_DIR"]})
    tutor = get_tutor_instance()
    logger.success("Tutor ready", data={
        "knowledge_entries": len(tutor.store),
        "categories": [category.value for category in tutor.store.list_categories()],
        "skipped_records": len(tutor.store.skipped),
    })


if __name__ == "__main__":
    import uvicorn

    try:
        uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("PORT", "8000")))
    except KeyboardInterrupt:
        logger.info("🛑 Server stopped.")
        sys.exit(0)
