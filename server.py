#!/usr/bin/env python3
"""
Spellbook Memory Server
=======================

Architecture:
- Engine: spellbook.core.engine.Spellbook
- Embeddings: Ollama nomic-embed-text (768 dims)
- Vector Store: Qdrant (server URL or embedded local path), cosine
- Namespaces: Canon (default) + named Lores, one collection pair each
- Writes gated by one-hour REST sessions

Every endpoint forwards the engine's ``{status, message, ...}`` outcome as
JSON. Only "engine not initialized" maps to an HTTP error (503).

Usage:
    python server.py              # Start server on 0.0.0.0:17950
    python server.py --port 8000  # Custom port
"""

import argparse
import logging
import sys
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, Dict, Optional

import portalocker
import uvicorn
from fastapi import FastAPI, HTTPException

from spellbook.core.config import SpellbookConfig, validate_config
from spellbook.core.engine import Spellbook
from spellbook.core.types import (
    EraseRequest,
    FindRequest,
    ImportRequest,
    MemorizeRequest,
    RestEndRequest,
    ReviseRequest,
    ScribeRequest,
    UpdateLoreRequest,
)
from spellbook.platform import get_log_dir, get_platform_info
from spellbook.version import __version__


def _configure_logging() -> Path:
    log_dir = get_log_dir()
    log_dir.mkdir(parents=True, exist_ok=True)
    log_path = log_dir / "spellbook_server.log"
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[
            logging.FileHandler(log_path, mode="a"),
            logging.StreamHandler(),
        ],
    )
    return log_path


server_log_path = _configure_logging()
logger = logging.getLogger("Spellbook.Server")

# --- Global State ---
book: Optional[Spellbook] = None
_SERVER_INSTANCE_LOCK_HANDLE: Optional[portalocker.Lock] = None
_SERVER_INSTANCE_LOCK_PATH: Optional[Path] = None


def _acquire_server_instance_lock(config: SpellbookConfig) -> None:
    """
    Acquire an exclusive process-wide server lease for the configured data dir.

    Embedded local Qdrant is single-process per storage path, so a second
    server on the same data directory must fail fast.
    """
    global _SERVER_INSTANCE_LOCK_HANDLE, _SERVER_INSTANCE_LOCK_PATH

    data_dir = Path(config.data_dir)
    lock_path = data_dir / ".spellbook_server.instance.lock"
    lock_path.parent.mkdir(parents=True, exist_ok=True)

    lock_handle = portalocker.Lock(
        str(lock_path),
        mode="a",
        timeout=0.25,
        flags=portalocker.LOCK_EX | portalocker.LOCK_NB,
        fail_when_locked=True,
    )

    try:
        lock_handle.acquire()
    except portalocker.exceptions.LockException as exc:
        raise RuntimeError(
            "Spellbook server instance lock is already held for data directory "
            f"'{data_dir}'. Reuse the existing server or stop it before starting "
            "another instance."
        ) from exc

    _SERVER_INSTANCE_LOCK_HANDLE = lock_handle
    _SERVER_INSTANCE_LOCK_PATH = lock_path
    logger.info("Acquired server instance lock: %s", lock_path)


def _release_server_instance_lock() -> None:
    """Release the process-wide server lease if held."""
    global _SERVER_INSTANCE_LOCK_HANDLE, _SERVER_INSTANCE_LOCK_PATH
    lock_handle = _SERVER_INSTANCE_LOCK_HANDLE
    lock_path = _SERVER_INSTANCE_LOCK_PATH
    _SERVER_INSTANCE_LOCK_HANDLE = None
    _SERVER_INSTANCE_LOCK_PATH = None
    if lock_handle is None:
        return

    try:
        lock_handle.release()
    except portalocker.exceptions.LockException as exc:
        logger.warning("Failed to release server instance lock %s: %s", lock_path, exc)
    logger.info("Released server instance lock: %s", lock_path)


# --- Application Lifecycle ---
@asynccontextmanager
async def lifespan(app: FastAPI):
    global book

    logger.info("Spellbook Server starting...")

    config = SpellbookConfig.from_env()
    validate_config(config)
    config.ensure_directories()

    try:
        if config.vector.path:
            _acquire_server_instance_lock(config)

        book = Spellbook(config)
        await book.initialize()
        yield
    finally:
        logger.info("Shutting down Spellbook Server...")
        if book:
            await book.shutdown()
            book = None
        _release_server_instance_lock()
        logger.info("Spellbook Server stopped.")


app = FastAPI(
    title="Spellbook Memory Server",
    description="Semantic chunk memory with Canon and named Lores",
    version=__version__,
    lifespan=lifespan,
)


def _require_book() -> Spellbook:
    if book is None:
        raise HTTPException(status_code=503, detail="Spellbook not initialized")
    return book


# --- Health ---

@app.get("/health")
async def health_check():
    if book is None:
        return {"status": "initializing", "version": __version__}

    try:
        health = await book.health()
    except Exception as e:
        logger.error("Health check failed: %s", e)
        return {"status": "error", "error": str(e), "version": __version__}
    return {**health, "version": __version__, "platform": get_platform_info()}


# --- REST sessions ---

@app.post("/rest")
async def start_rest_endpoint() -> Dict[str, Any]:
    """Open a REST session; required before any write."""
    return await _require_book().start_rest()


@app.post("/rest/end")
async def end_rest_endpoint(req: RestEndRequest) -> Dict[str, Any]:
    return await _require_book().end_rest(req.session_id)


# --- Writes ---

@app.post("/scribe")
async def scribe_endpoint(req: ScribeRequest) -> Dict[str, Any]:
    """Store a chunk in Canon, or in ``lore`` (created on first write)."""
    return await _require_book().scribe(
        req.chunk,
        req.session_id,
        category=req.category,
        source=req.source,
        lore=req.lore,
        lore_description=req.lore_description,
    )


@app.post("/erase")
async def erase_endpoint(req: EraseRequest) -> Dict[str, Any]:
    return await _require_book().erase(req.chunk_id, lore=req.lore)


@app.post("/revise")
async def revise_endpoint(req: ReviseRequest) -> Dict[str, Any]:
    return await _require_book().revise(req.chunk_id, req.new_text, lore=req.lore)


# --- Reads ---

@app.post("/memorize")
async def memorize_endpoint(req: MemorizeRequest) -> Dict[str, Any]:
    """Semantic search."""
    return await _require_book().memorize(req.query, limit=req.limit, filter=req.filter, lore=req.lore)


@app.post("/find")
async def find_endpoint(req: FindRequest) -> Dict[str, Any]:
    """Keyword search ranked by semantic similarity."""
    return await _require_book().find(req.keywords, limit=req.limit, filter=req.filter, lore=req.lore)


@app.get("/topics/{topic_id}")
async def get_topic_endpoint(topic_id: str, lore: Optional[str] = None) -> Dict[str, Any]:
    return await _require_book().get_topic(topic_id, lore=lore)


# --- Admin ---

@app.get("/stats")
async def stats_endpoint(lore: Optional[str] = None) -> Dict[str, Any]:
    return await _require_book().stats(lore=lore)


@app.get("/index")
async def index_endpoint(scope: Optional[str] = None, lore: Optional[str] = None) -> Dict[str, Any]:
    return await _require_book().get_index(scope=scope, lore=lore)


@app.get("/export")
async def export_endpoint(lore: Optional[str] = None) -> Dict[str, Any]:
    return await _require_book().export(lore=lore)


@app.post("/import")
async def import_endpoint(req: ImportRequest) -> Dict[str, Any]:
    return await _require_book().import_backup(req.data, req.session_id, lore=req.lore)


@app.get("/filter-guide")
async def filter_guide_endpoint() -> Dict[str, Any]:
    return await _require_book().filter_guide()


# --- Lores ---

@app.get("/lores")
async def list_lores_endpoint() -> Dict[str, Any]:
    return await _require_book().list_lores()


@app.get("/lores/{lore}/stats")
async def lore_stats_endpoint(lore: str) -> Dict[str, Any]:
    return await _require_book().stats(lore=lore)


@app.put("/lores/{lore}")
async def update_lore_endpoint(lore: str, req: UpdateLoreRequest) -> Dict[str, Any]:
    return await _require_book().update_lore(lore, req.description)


@app.delete("/lores/{lore}")
async def delete_lore_endpoint(lore: str) -> Dict[str, Any]:
    return await _require_book().delete_lore(lore)


# --- Main ---

def main():
    config = SpellbookConfig.from_env()

    parser = argparse.ArgumentParser(description="Spellbook Memory Server")
    parser.add_argument("--host", default=config.server.host, help="Host to bind to")
    parser.add_argument("--port", type=int, default=config.server.port, help="Port to bind to")
    parser.add_argument("--reload", action="store_true", help="Enable hot reload")
    args = parser.parse_args()

    logger.info("Starting Spellbook Memory Server on %s:%d", args.host, args.port)

    try:
        uvicorn.run(
            "server:app",
            host=args.host,
            port=args.port,
            reload=args.reload,
            log_level=config.server.log_level,
        )
    except OSError as e:
        if e.errno in (98, 10048):
            logger.error("Failed to start server on port %d. Port is likely in use.", args.port)
            print(f"\n[ERROR] Port {args.port} is already in use.")
            print("Another Spellbook instance is probably running.")
            print(f"Please check the server log at: {server_log_path}")
            sys.exit(1)
        raise


if __name__ == "__main__":
    main()
