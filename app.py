# app.py
import logging
import os
from typing import List

import uvicorn
from fastapi import Depends, FastAPI, HTTPException, Query, Request, Response
from fastapi.middleware.cors import CORSMiddleware

from config import (
    CAPTCHA_IMAGE_BASE,
    CAPTCHA_PROBABILITY,
    CAPTCHA_SENSITIVE_TYPES,
    CAPTCHA_TTL_SECONDS,
    CASE_SOURCE,
    DATASET_DIRS,
    HISTORY_DEFAULT_LIMIT,
    HISTORY_MAX_LIMIT,
    LOG_LEVEL,
    MAX_CLIENT_SESSIONS,
    MOCK_LATENCY_SECONDS,
)
from courts import DEFAULT_REGISTRY
from orchestrator import CaseQueryOrchestrator, OrchestratorRegistry, RandomVerificationPolicy
from query_log import QueryLogStore
from schemas import CourtConfig, QueryLogEntry, QueryStats, SearchOutcome, SearchRequest
from scraper import CaseSource, DatasetCaseSource, MockCaseSource
from storage.db import SqlLogPersistence, init_db

logger = logging.getLogger("court_app")
logging.basicConfig(level=LOG_LEVEL)

# Rejected before any search attempt, so never logged
UNLOGGED_CODES = {"VALIDATION_ERROR", "UNKNOWN_COURT", "UNKNOWN_CASE_TYPE"}


def build_source() -> CaseSource:
    if CASE_SOURCE == "dataset":
        return DatasetCaseSource(DATASET_DIRS)
    if CASE_SOURCE != "mock":
        logger.warning("Unknown CASE_SOURCE=%r, using mock", CASE_SOURCE)
    return MockCaseSource(DEFAULT_REGISTRY, latency=MOCK_LATENCY_SECONDS)


def build_registry(source: CaseSource) -> OrchestratorRegistry:
    def factory() -> CaseQueryOrchestrator:
        return CaseQueryOrchestrator(
            source,
            courts=DEFAULT_REGISTRY,
            policy=RandomVerificationPolicy(CAPTCHA_SENSITIVE_TYPES, CAPTCHA_PROBABILITY),
            image_base=CAPTCHA_IMAGE_BASE,
            challenge_ttl=CAPTCHA_TTL_SECONDS,
        )
    return OrchestratorRegistry(factory, max_clients=MAX_CLIENT_SESSIONS)


source = build_source()
registry = build_registry(source)
store = QueryLogStore(SqlLogPersistence(create=False))

app = FastAPI(title="Court Fetcher API")

# CORS (dev)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"], allow_credentials=True,
    allow_methods=["*"], allow_headers=["*"],
)


# ---------- dependencies ----------
def get_store() -> QueryLogStore:
    return store


def get_registry() -> OrchestratorRegistry:
    return registry


def get_source() -> CaseSource:
    return source


# ---------- startup ----------
@app.on_event("startup")
def _startup():
    init_db()
    store.load()
    rows = source.reload() if isinstance(source, DatasetCaseSource) else 0
    logger.info("DB initialized; CASE_SOURCE=%s; dataset_rows=%s; history=%s",
                CASE_SOURCE, rows, len(store))


@app.get("/favicon.ico", include_in_schema=False)
def favicon(): return Response(status_code=204)


# ---------- utility routes ----------
@app.get("/ping")
def ping(log: QueryLogStore = Depends(get_store), src: CaseSource = Depends(get_source)):
    return {"status": "ok", "source": getattr(src, "method", type(src).__name__),
            "history": len(log), "pending_persistence": log.pending_count}


@app.get("/courts", response_model=List[CourtConfig])
def list_courts():
    return DEFAULT_REGISTRY.all()


# ---------- main lookup ----------
@app.post("/cases/search", response_model=SearchOutcome)
def search_case(
    body: SearchRequest,
    request: Request,
    orchestrators: OrchestratorRegistry = Depends(get_registry),
    log: QueryLogStore = Depends(get_store),
):
    orchestrator = orchestrators.for_client(body.client_id)
    outcome = orchestrator.search(body.query, body.solution)

    # Log terminal outcomes exactly once; challenges are intermediate steps
    if outcome.terminal and outcome.error_code not in UNLOGGED_CODES:
        snapshot = outcome.data.raw_source if outcome.data else None
        log.append(
            body.query,
            outcome.success,
            result_snapshot=snapshot,
            error=outcome.reason if not outcome.success else None,
            user_agent=request.headers.get("user-agent"),
            ip_address=request.client.host if request.client else None,
        )
    return outcome


# ---------- history ----------
@app.get("/history", response_model=List[QueryLogEntry])
def query_history(
    limit: int = Query(HISTORY_DEFAULT_LIMIT, ge=1, le=HISTORY_MAX_LIMIT),
    log: QueryLogStore = Depends(get_store),
):
    return log.recent(limit)


@app.get("/stats", response_model=QueryStats)
def query_stats(log: QueryLogStore = Depends(get_store)):
    return log.stats()


@app.delete("/history")
def clear_history(log: QueryLogStore = Depends(get_store)):
    log.clear()
    return {"ok": True}


@app.post("/history/sync")
def sync_history(log: QueryLogStore = Depends(get_store)):
    ok = log.flush()
    return {"ok": ok, "pending": log.pending_count, "error": log.last_error}


# ---------- dataset admin ----------
def _dataset_source(src: CaseSource) -> DatasetCaseSource:
    if not isinstance(src, DatasetCaseSource):
        raise HTTPException(status_code=409, detail="Active case source is not dataset backed")
    return src


@app.get("/datasets/list")
def list_datasets(src: CaseSource = Depends(get_source)):
    dataset = _dataset_source(src)
    return {"datasets": dataset.summary(), "scanned_dirs": dataset.scanned_dirs()}


@app.post("/admin/dataset/reload")
def reload_dataset(src: CaseSource = Depends(get_source)):
    dataset = _dataset_source(src)
    count = dataset.reload()
    return {"ok": True, "rows": count, "datasets": dataset.summary()}


if __name__ == "__main__":
    uvicorn.run(app, host=os.getenv("HOST", "127.0.0.1"), port=int(os.getenv("PORT", "8000")))
