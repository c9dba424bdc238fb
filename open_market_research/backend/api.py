"""
HTTP API for the Open Market Research back end.

This module defines the FastAPI application that the web front end
talks to.  It exposes the AI structuring endpoint together with the
study browsing, submission and profile operations, all backed by the
functions in :mod:`database`.

Endpoints:

* **GET /health** – Basic liveness check.

* **GET /api/options** – Dropdown vocabularies and wizard steps.

* **GET /api/structure-research** – Report whether the LLM service can
  be used (``{"available": bool, "message": str}``).

* **POST /api/structure-research** – Structure raw research text.  The
  body is ``{"content": str, "title"?: str, "metadata"?: object}`` and
  the response ``{"success", "data", "confidence", "warnings"}``.

* **POST /api/structure-research/suggestions** – Improvement
  suggestions for a structured study.

* **GET /api/studies** – List studies, newest first, with optional
  ``search``, ``industry``, ``country`` and ``limit`` query parameters.

* **GET /api/studies/{study_id}** – A single study.

* **POST /api/studies** – Submit a study.  **PATCH** and **DELETE** on
  ``/api/studies/{study_id}`` are restricted to the author.

* **GET /api/my-submissions** – The caller's own studies.

* **GET /api/profile**, **PUT /api/profile** – The caller's profile.

Users are authenticated upstream; the user id arrives in the
``X-User-Id`` header and its absence means an anonymous caller.  Errors
are returned as ``{"error": message}``.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from fastapi import Depends, FastAPI, Header, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from . import database as db
from .constants import all_options
from .permissions import PermissionDenied, require_permission
from .research_structurer import ResearchStructurer
from .schemas import ProfileUpdate, StructureRequest, StudySubmission, SuggestionsRequest
from .submission import build_study_record, missing_fields

logger = logging.getLogger(__name__)


app = FastAPI(title="Open Market Research API", version="1.0.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)

_structurer: Optional[ResearchStructurer] = None


def get_structurer() -> ResearchStructurer:
    """Return the shared structurer, creating it on first use."""
    global _structurer
    if _structurer is None:
        _structurer = ResearchStructurer()
    return _structurer


def get_current_user_id(x_user_id: Optional[str] = Header(default=None)) -> Optional[str]:
    """Return the authenticated user id, or ``None`` for anonymous callers."""
    if x_user_id and x_user_id.strip():
        return x_user_id.strip()
    return None


def _error(status_code: int, message: str, **extra: Any) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={'error': message, **extra})


@app.exception_handler(PermissionDenied)
async def permission_denied_handler(request: Any, exc: PermissionDenied) -> JSONResponse:
    return _error(403 if exc.authenticated else 401, str(exc))


@app.on_event("startup")
async def startup_event() -> None:
    """Make sure the database schema exists before serving requests."""
    db.init_db()
    logger.info("API startup complete")


@app.get("/health", response_model=Dict[str, Any])
async def health_check() -> Dict[str, Any]:
    return {
        "status": "healthy",
        "server": "OpenMarketResearch",
    }


@app.get("/api/options", response_model=Dict[str, Any])
async def options() -> Dict[str, Any]:
    return all_options()


@app.get("/api/structure-research")
def structure_research_status(structurer: ResearchStructurer = Depends(get_structurer)) -> Any:
    try:
        available = structurer.is_available()
    except Exception as e:  # pragma: no cover - is_available does not raise
        logger.error(f"Availability check failed: {e}")
        return _error(500, "Failed to check service availability")
    return {
        "available": available,
        "message": "LLM service is available" if available else "LLM service is not available",
    }


@app.post("/api/structure-research")
def structure_research(
    body: StructureRequest,
    structurer: ResearchStructurer = Depends(get_structurer),
) -> Any:
    """Structure raw research text into a partial study record."""
    if not body.content or not isinstance(body.content, str):
        return _error(400, "Content is required and must be a string")
    try:
        result = structurer.structure_research(body.content, body.title, body.metadata)
    except Exception as e:  # pragma: no cover - structure_research does not raise
        logger.error(f"Structuring error: {e}")
        return _error(500, "Internal server error")
    if not result.get('success'):
        return _error(500, result.get('error') or "Failed to structure research data")
    return {
        "success": True,
        "data": result['data'],
        "confidence": result['confidence'],
        "warnings": result.get('warnings', []),
    }


@app.post("/api/structure-research/suggestions")
def structure_research_suggestions(
    body: SuggestionsRequest,
    structurer: ResearchStructurer = Depends(get_structurer),
) -> Dict[str, Any]:
    return {"suggestions": structurer.get_improvement_suggestions(body.data)}


@app.get("/api/studies")
async def list_studies(
    search: str = "",
    industry: Optional[str] = None,
    country: Optional[str] = None,
    limit: Optional[int] = Query(default=None, ge=1),
) -> Any:
    """List studies with the filters offered on the browse page.

    ``total`` is the size of the whole corpus so the client can show
    "Showing N of M studies".
    """
    try:
        studies = db.list_studies(search=search, industry=industry, country=country, limit=limit)
        return {
            "studies": studies,
            "total": db.count_studies(),
            "filters": db.get_filter_options(),
        }
    except Exception as e:
        logger.error(f"Error listing studies: {e}")
        return _error(500, "Failed to list studies")


@app.get("/api/studies/{study_id}")
async def get_study(study_id: str) -> Any:
    try:
        study = db.fetch_study(study_id)
    except Exception as e:
        logger.error(f"Error fetching study {study_id}: {e}")
        return _error(500, "Failed to load study")
    if not study:
        return _error(404, "Study not found")
    return study


@app.post("/api/studies", status_code=201)
async def submit_study(
    body: StudySubmission,
    user_id: Optional[str] = Depends(get_current_user_id),
) -> Any:
    """Persist a completed submission as a pending study."""
    require_permission('studies', 'create', user_id)
    data = body.model_dump(mode='json', exclude_none=True)
    missing = missing_fields(data)
    if missing:
        return _error(400, "Submission is incomplete", missing=missing)
    record = build_study_record(data, user_id)
    try:
        return db.create_study(record, user_id)
    except Exception as e:
        logger.error(f"Error submitting study: {e}")
        return _error(500, "Failed to submit study. Please try again.")


@app.patch("/api/studies/{study_id}")
async def update_study(
    study_id: str,
    body: StudySubmission,
    user_id: Optional[str] = Depends(get_current_user_id),
) -> Any:
    """Apply an author's edits.  Required fields cannot be cleared with null."""
    changes = body.model_dump(mode='json', exclude_unset=True)
    cleared = sorted(k for k, v in changes.items() if v is None and k not in db.NULLABLE_FIELDS)
    if cleared:
        return _error(400, "Required fields cannot be null", fields=cleared)
    try:
        study = db.update_study(study_id, changes, user_id)
    except PermissionDenied:
        raise
    except Exception as e:
        logger.error(f"Error updating study {study_id}: {e}")
        return _error(500, "Failed to update study. Please try again.")
    if study is None:
        return _error(404, "Study not found")
    return study


@app.delete("/api/studies/{study_id}")
async def delete_study(
    study_id: str,
    user_id: Optional[str] = Depends(get_current_user_id),
) -> Any:
    try:
        deleted = db.delete_study(study_id, user_id)
    except PermissionDenied:
        raise
    except Exception as e:
        logger.error(f"Error deleting study {study_id}: {e}")
        return _error(500, "Failed to delete study")
    if not deleted:
        return _error(404, "Study not found")
    return {"deleted": True}


@app.get("/api/my-submissions")
async def my_submissions(user_id: Optional[str] = Depends(get_current_user_id)) -> Any:
    if user_id is None:
        return _error(401, "Sign in required")
    try:
        return {"studies": db.list_user_studies(user_id)}
    except Exception as e:
        logger.error(f"Error listing submissions for {user_id}: {e}")
        return _error(500, "Failed to load your submissions")


@app.get("/api/profile")
async def get_profile(user_id: Optional[str] = Depends(get_current_user_id)) -> Any:
    if user_id is None:
        return _error(401, "Sign in required")
    return {"profile": db.get_profile(user_id, user_id)}


@app.put("/api/profile")
async def save_profile(
    body: ProfileUpdate,
    user_id: Optional[str] = Depends(get_current_user_id),
) -> Any:
    if user_id is None:
        return _error(401, "Sign in required")
    try:
        profile = db.upsert_profile(user_id, body.model_dump(exclude_unset=True), user_id)
    except PermissionDenied:
        raise
    except Exception as e:
        logger.error(f"Error updating profile: {e}")
        return _error(500, "Failed to save profile. Please try again.")
    return {"profile": profile}


def run(host: str = "0.0.0.0", port: int = 8000) -> None:
    """Run the API using uvicorn."""
    import uvicorn  # type: ignore

    logger.info(f"Starting API server on {host}:{port}")
    uvicorn.run(
        "open_market_research.backend.api:app",
        host=host,
        port=port,
        log_level="info",
        reload=False,
    )
