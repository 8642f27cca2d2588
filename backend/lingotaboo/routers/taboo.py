from __future__ import annotations

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.orm import Session

from .. import catalog, stats
from ..db import get_db
from ..engine import FinishResult, SessionDetail, SessionSnapshot, SubmitResult, TabooEngine
from ..oracles import GeminiOracles
from .auth import User, get_current_user


router = APIRouter(prefix="/taboo", tags=["taboo"])


class StartRequest(BaseModel):
    card_id: str = Field(alias="cardId")
    target_language: str = Field(alias="targetLanguage")

    model_config = ConfigDict(populate_by_name=True)


class SubmitRequest(BaseModel):
    description: Optional[str] = None
    include_example: bool = Field(default=False, alias="includeExample")

    model_config = ConfigDict(populate_by_name=True)


class FinishRequest(BaseModel):
    include_example: bool = Field(default=False, alias="includeExample")

    model_config = ConfigDict(populate_by_name=True)


class StartResponse(BaseModel):
    success: bool = True
    session: SessionSnapshot


class SessionListResponse(BaseModel):
    success: bool = True
    sessions: List[stats.SessionSummary]


class StatsResponse(BaseModel):
    success: bool = True
    stats: stats.UserStats


def get_oracles() -> GeminiOracles:
    return GeminiOracles()


def get_engine(db: Session = Depends(get_db), oracles: GeminiOracles = Depends(get_oracles)) -> TabooEngine:
    return TabooEngine(db, translator=oracles, evaluator=oracles, example_writer=oracles)


@router.get("/cards")
async def list_cards(
    count: int = Query(default=1, ge=1),
    category: Optional[str] = None,
    difficulty: Optional[str] = None,
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    cards = catalog.get_random_cards(db, count, category, difficulty)
    return {"success": True, "cards": [catalog.card_to_dict(c) for c in cards], "count": len(cards)}


@router.get("/categories")
async def list_categories(db: Session = Depends(get_db)) -> Dict[str, Any]:
    return {"success": True, "categories": catalog.get_categories(db)}


@router.post("/sessions/start", response_model=StartResponse)
async def start_session(
    req: StartRequest,
    user: User = Depends(get_current_user),
    engine: TabooEngine = Depends(get_engine),
):
    snapshot = await engine.start_session(req.card_id, user.username, req.target_language)
    return StartResponse(session=snapshot)


@router.post("/sessions/{session_id}/submit", response_model=SubmitResult)
async def submit_description(
    session_id: str,
    req: SubmitRequest,
    user: User = Depends(get_current_user),
    engine: TabooEngine = Depends(get_engine),
):
    return await engine.submit(session_id, user.username, req.description, include_example=req.include_example)


@router.post("/sessions/{session_id}/finish", response_model=FinishResult)
async def finish_session(
    session_id: str,
    req: Optional[FinishRequest] = None,
    user: User = Depends(get_current_user),
    engine: TabooEngine = Depends(get_engine),
):
    include_example = bool(req and req.include_example)
    return await engine.finish(session_id, user.username, include_example=include_example)


@router.get("/sessions/{session_id}", response_model=SessionDetail)
async def get_session(
    session_id: str,
    user: User = Depends(get_current_user),
    engine: TabooEngine = Depends(get_engine),
):
    return engine.get_session(session_id, user.username)


@router.get("/sessions", response_model=SessionListResponse)
async def list_sessions(
    language: Optional[str] = None,
    limit: Optional[int] = None,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return SessionListResponse(sessions=stats.get_user_history(db, user.username, language, limit))


@router.get("/stats", response_model=StatsResponse)
async def get_stats(
    language: Optional[str] = None,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return StatsResponse(stats=stats.get_user_stats(db, user.username, language))
