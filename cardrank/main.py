"""HTTP surface for card moves.

Run with ``uvicorn cardrank.main:create_app --factory``. Settings are read and
validated when the app is built, so a bad configuration stops the process
before it serves anything.
"""
from __future__ import annotations

import logging
import uuid
from contextlib import asynccontextmanager
from typing import Iterator, Optional

from fastapi import Depends, FastAPI, Header, Query, Request
from fastapi.responses import JSONResponse, StreamingResponse
from sqlalchemy.orm import Session, sessionmaker

from . import __version__
from .auth import get_requester_id
from .config import Settings, configure_logging, load_settings
from .context import CallContext
from .db import init_db, make_engine, make_session_factory
from .errors import (
    CardRankError,
    Conflict,
    DomainViolation,
    NotFound,
    PreconditionRequired,
    RebalanceFailed,
    RequestCancelled,
    ValidationFailed,
)
from .moves import MoveOrchestrator
from .notifier import CARD_MOVED, TOPICS, Broker, InMemoryBroker, Notifier
from .schemas import CardMove, CardOut, ErrorEnvelope, Health, Version

logger = logging.getLogger(__name__)

VERSION = __version__

ERROR_STATUS = {
    NotFound: 404,
    DomainViolation: 400,
    ValidationFailed: 400,
    PreconditionRequired: 428,
    Conflict: 409,
    RebalanceFailed: 503,
    RequestCancelled: 504,
}


def status_for(exc: CardRankError) -> int:
    for cls, status in ERROR_STATUS.items():
        if isinstance(exc, cls):
            return status
    return 500


def get_session(request: Request) -> Iterator[Session]:
    session = request.app.state.session_factory()
    try:
        yield session
    finally:
        session.close()


def create_app(
    settings: Optional[Settings] = None,
    session_factory: Optional[sessionmaker] = None,
    broker: Optional[Broker] = None,
) -> FastAPI:
    settings = settings or load_settings()
    configure_logging(settings.log_level)

    engine = None
    if session_factory is None:
        engine = make_engine(settings.database_url)
        session_factory = make_session_factory(engine)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if engine is not None:
            init_db(engine)
        yield
        if engine is not None:
            engine.dispose()

    app = FastAPI(title="cardrank", version=VERSION, lifespan=lifespan)
    app.state.settings = settings
    app.state.session_factory = session_factory
    app.state.broker = broker or InMemoryBroker()
    app.state.notifier = Notifier(app.state.broker)
    app.state.orchestrator = MoveOrchestrator(settings.rank, app.state.notifier)

    @app.exception_handler(CardRankError)
    async def handle_card_rank_error(request: Request, exc: CardRankError) -> JSONResponse:
        status = status_for(exc)
        request_id = str(uuid.uuid4())
        log = logger.error if status >= 500 else logger.info
        log("%s %s failed with %s (%s): %s", request.method, request.url.path, exc.code, request_id, exc)
        body = ErrorEnvelope(
            code=exc.code,
            message=str(exc),
            details=exc.details() or None,
            requestId=request_id,
        )
        return JSONResponse(status_code=status, content={"error": body.model_dump(mode="json")})

    # === Health & metadata ===

    @app.get("/v1/health", response_model=Health)
    def health() -> Health:
        return Health()

    @app.get("/v1/version", response_model=Version)
    def version() -> Version:
        return Version(version=VERSION)

    # === Card moves ===

    @app.post("/v1/cards/{card_id}:move", response_model=CardOut)
    def move_card(
        card_id: str,
        payload: CardMove,
        request: Request,
        user: str = Depends(get_requester_id),
        session: Session = Depends(get_session),
        if_match: Optional[str] = Header(default=None, alias="If-Match"),
    ) -> CardOut:
        token = payload.rowVersion
        if not token and if_match:
            token = if_match.strip('"')
        ctx = CallContext.with_timeout(settings.request_timeout)
        card = request.app.state.orchestrator.move(
            session, ctx, card_id, payload.columnId, payload.rank, token, user
        )
        return card.to_out()

    # === Board events ===

    @app.get("/v1/boards/{board_id}/events")
    def board_events(
        board_id: str,
        request: Request,
        kind: str = Query(default=CARD_MOVED, pattern=f"^({'|'.join(TOPICS)})$"),
        limit: Optional[int] = Query(default=None, ge=1),
        user: str = Depends(get_requester_id),
        session: Session = Depends(get_session),
    ) -> StreamingResponse:
        notifier = request.app.state.notifier
        feed = notifier.open_board_feed(session, board_id, user, kind)
        return StreamingResponse(
            notifier.stream_board_feed(board_id, feed, kind, limit),
            media_type="text/event-stream",
            headers={"Cache-Control": "no-cache"},
        )

    return app
