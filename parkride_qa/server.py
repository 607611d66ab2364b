"""
FastAPI server for the park-and-ride Q&A chatbot.
"""

import asyncio
from contextlib import asynccontextmanager
from pathlib import Path

from dotenv import load_dotenv
load_dotenv()  # Load .env file

from fastapi import Depends, FastAPI, File, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from .errors import ChatbotError, ValidationError
from .kb.collections import get_search_settings
from .kb.indexer import get_uploads_path
from .kb.loader import parse_knowledge_bytes
from .kb.retriever import KnowledgeRetriever, KnowledgeStoreHandle
from .llm_client import LLMProvider, get_llm_client
from .pipeline.adjacency import TagAdjacencyTable, load_tag_adjacency
from .pipeline.chat import answer_query
from .schemas import ChatRequest, ChatResponse, UploadResult
from .utils import get_logger, setup_logging

logger = get_logger("server")

MAX_UPLOAD_BYTES = 5 * 1024 * 1024


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create the process-wide collaborators once, before serving requests."""
    setup_logging()
    app.state.llm = get_llm_client()
    app.state.tag_table = load_tag_adjacency()
    app.state.store = KnowledgeStoreHandle()
    logger.info(f"Server started in {'mock' if app.state.llm.is_mock else 'real'} mode")
    yield


# Initialize FastAPI app
app = FastAPI(
    title="Park & Ride Q&A Chatbot",
    description="Knowledge base Q&A with context-aware follow-up questions",
    version="1.0.0",
    lifespan=lifespan
)


# Dependencies
def get_llm(request: Request) -> LLMProvider:
    return request.app.state.llm


def get_tag_table(request: Request) -> TagAdjacencyTable:
    return request.app.state.tag_table


def get_store_handle(request: Request) -> KnowledgeStoreHandle:
    return request.app.state.store


def get_knowledge_store(handle: KnowledgeStoreHandle = Depends(get_store_handle)) -> KnowledgeRetriever:
    # Sync dependency: runs in the threadpool, so a first-time index build does not block the loop
    return handle.get()


# Error responses
@app.exception_handler(ChatbotError)
async def chatbot_error_handler(request: Request, exc: ChatbotError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {type(exc).__name__}: {exc}")
    else:
        logger.info(f"{request.method} {request.url.path} rejected: {exc}")
    return JSONResponse(status_code=exc.status_code, content={"error": exc.public_message})


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(status_code=400, content={"error": "Invalid request"})


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})


# API Routes
@app.get("/mode")
async def get_mode(
    llm: LLMProvider = Depends(get_llm),
    handle: KnowledgeStoreHandle = Depends(get_store_handle)
):
    """Get the current processing mode."""
    return {
        "mode": "mock" if llm.is_mock else "real",
        "knowledge_loaded": handle.initialized
    }


@app.post("/chat", response_model=ChatResponse)
async def chat(
    payload: ChatRequest,
    llm: LLMProvider = Depends(get_llm),
    table: TagAdjacencyTable = Depends(get_tag_table),
    store: KnowledgeRetriever = Depends(get_knowledge_store)
):
    """Answer a question from the knowledge base."""
    logger.info(f"Received query: {payload.query!r}")
    return await answer_query(payload.query, store, llm, table, **get_search_settings())


@app.get("/documents")
async def list_documents(
    limit: int = 100,
    store: KnowledgeRetriever = Depends(get_knowledge_store)
):
    """List indexed knowledge records."""
    if limit <= 0:
        raise ValidationError("limit must be positive")
    records = await asyncio.to_thread(store.list_records, limit)
    return {"documents": [record.model_dump(mode="json") for record in records]}


@app.post("/upload-knowledge", response_model=UploadResult)
async def upload_knowledge(
    file: UploadFile | None = File(default=None),
    store: KnowledgeRetriever = Depends(get_knowledge_store)
):
    """Replace the knowledge base with an uploaded CSV file."""
    if file is None or not file.filename:
        raise ValidationError("ファイルが見つかりません")
    if not file.filename.lower().endswith(".csv"):
        raise ValidationError("Only CSV files are allowed")

    data = await file.read()
    if not data.strip():
        raise ValidationError("Uploaded file is empty")
    if len(data) > MAX_UPLOAD_BYTES:
        raise ValidationError(f"File exceeds {MAX_UPLOAD_BYTES // (1024 * 1024)} MB")

    records = parse_knowledge_bytes(data)
    if not records:
        raise ValidationError("CSV contains no records")

    count = await asyncio.to_thread(store.replace_records, records)

    # Only a successfully indexed file is kept
    uploads_dir = get_uploads_path()
    uploads_dir.mkdir(parents=True, exist_ok=True)
    saved_path = uploads_dir / Path(file.filename).name
    saved_path.write_bytes(data)
    logger.info(f"Knowledge replaced from upload {saved_path.name}: {count} records")

    return UploadResult(
        success=True,
        message="ファイルが正常にアップロードされました",
        record_count=count
    )


# Health check
@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "version": "1.0.0"}


def run_server(host: str = "127.0.0.1", port: int = 8000):
    """Run the server using uvicorn."""
    import uvicorn

    print("\n" + "=" * 60)
    print("  PARK & RIDE Q&A CHATBOT - Web Server")
    print("=" * 60)
    print(f"\n  Starting server at http://{host}:{port}")
    print("  Press Ctrl+C to stop\n")

    uvicorn.run(app, host=host, port=port, log_level="info")


if __name__ == "__main__":
    import sys
    port = int(sys.argv[1]) if len(sys.argv) > 1 else 8000
    run_server(port=port)
