"""
Intake Kernel API — FastAPI endpoints.

Exposes the intake interview over REST:
- Project creation and lookup
- Turn advancement (questions, artifacts, checkpoints)
- Packet commit and committed-version retrieval
- Ledger, readiness and audit inspection

Every route requires a bearer token. The token is mapped to a user id by an
injectable identity resolver, and every project route checks ownership.
"""

import logging
import sqlite3
from typing import Callable, Optional

from fastapi import Depends, FastAPI, Header, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from intake_kernel.config import IntakeSettings, get_settings
from intake_kernel.contract.commit import CommitPipeline
from intake_kernel.engine.turn import TurnEngine
from intake_kernel.errors import (
    AuthError,
    AuthorizationError,
    InputValidationError,
    IntakeError,
    NotFoundError,
    classify_database_error,
)
from intake_kernel.ingestion.fetcher import WebFetcher
from intake_kernel.ledger.ledger import DecisionLedger
from intake_kernel.llm.provider import LLMProvider, build_llm_provider
from intake_kernel.logging_config import setup_logging
from intake_kernel.models.interview import TurnRequest
from intake_kernel.models.turn import Project
from intake_kernel.readiness.scorer import score_readiness
from intake_kernel.store.store import IntakeStore

logger = logging.getLogger(__name__)

IdentityResolver = Callable[[str], Optional[str]]


# --- Request Models ---

class ProjectCreateRequest(BaseModel):
    name: str = ""


class CommitRequest(BaseModel):
    mode: str = "fast"
    cycle_no: Optional[int] = None


def token_as_user_id(token: str) -> Optional[str]:
    """Development resolver: the bearer token is the user id."""
    return token.strip() or None


# --- Application Factory ---

def create_app(
    store: Optional[IntakeStore] = None,
    llm: Optional[LLMProvider] = None,
    fetcher: Optional[WebFetcher] = None,
    settings: Optional[IntakeSettings] = None,
    identity_resolver: Optional[IdentityResolver] = None,
) -> FastAPI:
    """Create and configure the FastAPI application."""

    cfg = settings or get_settings()
    setup_logging(cfg.log_level)

    app = FastAPI(
        title="Intake Kernel API",
        description="Conversational requirements intake with trust-labeled decisions",
        version="0.1.0",
    )

    # Initialize components
    st = store or IntakeStore(cfg.db_path)
    provider = llm or build_llm_provider(cfg)
    wf = fetcher or WebFetcher(cfg)
    ledger = DecisionLedger(st)
    engine = TurnEngine(st, provider, wf, cfg, ledger=ledger)
    pipeline = CommitPipeline(st, ledger, provider, cfg)
    resolve_identity = identity_resolver or token_as_user_id

    # Store components on app state for access in endpoints
    app.state.settings = cfg
    app.state.store = st
    app.state.llm = provider
    app.state.fetcher = wf
    app.state.ledger = ledger
    app.state.turn_engine = engine
    app.state.commit_pipeline = pipeline

    # === ERROR HANDLING ===

    @app.exception_handler(IntakeError)
    async def handle_intake_error(request: Request, exc: IntakeError):
        if exc.status_code >= 500:
            logger.error("%s on %s: %s", exc.code, request.url.path, exc.message)
        return JSONResponse(exc.to_payload(), status_code=exc.status_code)

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(request: Request, exc: RequestValidationError):
        error = InputValidationError(
            "Request body failed validation",
            code="REQUEST_INVALID",
            context={"reasons": jsonable_encoder(exc.errors())},
        )
        return JSONResponse(error.to_payload(), status_code=error.status_code)

    @app.exception_handler(sqlite3.Error)
    async def handle_database_error(request: Request, exc: sqlite3.Error):
        error = classify_database_error(exc)
        logger.error("Database error on %s (%s): %s", request.url.path, error.layer.value, exc)
        return JSONResponse(error.to_payload(), status_code=error.status_code)

    @app.exception_handler(Exception)
    async def handle_unexpected(request: Request, exc: Exception):
        logger.exception("Unhandled exception on %s", request.url.path)
        return JSONResponse(
            {"error": {"code": "UNHANDLED_EXCEPTION", "message": "Internal server error", "layer": "server"}},
            status_code=500,
        )

    # === IDENTITY ===

    def current_user(authorization: Optional[str] = Header(default=None)) -> str:
        scheme, _, token = (authorization or "").partition(" ")
        if scheme.lower() != "bearer" or not token.strip():
            raise AuthError("Missing or malformed bearer token", code="AUTH_REQUIRED")
        user_id = resolve_identity(token.strip())
        if not user_id:
            raise AuthError("Invalid bearer token", code="AUTH_INVALID")
        return user_id

    def owned_project(project_id: str, user_id: str) -> Project:
        project = st.get_project(project_id)
        if project is None:
            raise NotFoundError(f"Project {project_id} not found", code="PROJECT_NOT_FOUND")
        if project.owner_user_id != user_id:
            raise AuthorizationError("Project belongs to another user", code="PROJECT_FORBIDDEN")
        return project

    # === PROJECTS ===

    @app.post("/projects")
    def create_project(req: ProjectCreateRequest, user_id: str = Depends(current_user)):
        """Start a new intake project owned by the caller."""
        project = st.create_project(user_id, req.name)
        logger.info("Created project %s for %s", project.id, user_id)
        return project.model_dump(mode="json")

    @app.get("/projects/{project_id}")
    def get_project(project_id: str, user_id: str = Depends(current_user)):
        return owned_project(project_id, user_id).model_dump(mode="json")

    # === INTERVIEW ===

    @app.post("/projects/{project_id}/turns")
    def advance_turn(project_id: str, req: TurnRequest, user_id: str = Depends(current_user)):
        """Record one user turn and return the next question."""
        project = owned_project(project_id, user_id)
        response = engine.advance(project.id, project.active_cycle_no, req)
        return response.model_dump(mode="json")

    @app.post("/projects/{project_id}/commit")
    def commit_packet(project_id: str, req: CommitRequest, user_id: str = Depends(current_user)):
        """Generate and persist the ten-document packet for the cycle."""
        project = owned_project(project_id, user_id)
        result = pipeline.commit(project.id, req.cycle_no or project.active_cycle_no, req.mode)
        return result.model_dump(mode="json")

    # === INSPECTION ===

    @app.get("/projects/{project_id}/cycles/{cycle_no}/decisions")
    def list_decisions(project_id: str, cycle_no: int, user_id: str = Depends(current_user)):
        owned_project(project_id, user_id)
        return [d.model_dump(mode="json") for d in st.list_decisions(project_id, cycle_no)]

    @app.get("/projects/{project_id}/cycles/{cycle_no}/readiness")
    def get_readiness(project_id: str, cycle_no: int, user_id: str = Depends(current_user)):
        owned_project(project_id, user_id)
        report = score_readiness(
            ledger.latest_by_key(project_id, cycle_no),
            st.list_turns(project_id, cycle_no),
            st.latest_artifact(project_id, cycle_no),
            st.pending_checkpoint(project_id, cycle_no),
        )
        return report.model_dump(mode="json")

    @app.get("/projects/{project_id}/cycles/{cycle_no}/contracts")
    def list_contracts(project_id: str, cycle_no: int, user_id: str = Depends(current_user)):
        owned_project(project_id, user_id)
        return [v.model_dump(mode="json") for v in st.list_versions(project_id, cycle_no)]

    @app.get("/projects/{project_id}/contracts/{version_id}")
    def get_contract(project_id: str, version_id: str, user_id: str = Depends(current_user)):
        """A committed version with its documents, claims and provenance refs."""
        owned_project(project_id, user_id)
        version = st.get_version(version_id)
        if version is None or version.project_id != project_id:
            raise NotFoundError(f"Contract version {version_id} not found", code="CONTRACT_NOT_FOUND")
        return {
            "version": version.model_dump(mode="json"),
            "documents": [d.model_dump(mode="json") for d in st.get_docs(version_id)],
            "strength": st.get_doc_strength(version_id) or [],
        }

    @app.get("/projects/{project_id}/cycles/{cycle_no}/audit")
    def list_audit(
        project_id: str,
        cycle_no: int,
        event_type: Optional[str] = None,
        user_id: str = Depends(current_user),
    ):
        owned_project(project_id, user_id)
        return st.list_audit(project_id, cycle_no, event_type)

    return app


# Default app instance
app = create_app()
