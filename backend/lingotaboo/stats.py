from __future__ import annotations

from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import List, Optional

from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.orm import Session

from .languages import resolve_language
from .models import TabooGameSession
from .settings import settings
from .status import SessionStatus


class UserStats(BaseModel):
    total_games: int = 0
    average_score: int = 0
    best_score: int = 0
    total_words_found: int = 0
    average_words_found: float = 0.0
    languages: List[str] = Field(default_factory=list)


class CardSummary(BaseModel):
    category: Optional[str] = None
    difficulty: Optional[str] = None


class SessionSummary(BaseModel):
    id: str
    answer_word: str
    target_language: str
    status: SessionStatus
    score: int
    words_found: int
    total_words: int
    created_at: Optional[datetime] = None
    card: Optional[CardSummary] = None


def _language_filter(target_language: Optional[str]) -> Optional[str]:
    if not target_language:
        return None
    return resolve_language(target_language).iso_code


def get_user_stats(db: Session, user_id: str, target_language: Optional[str] = None) -> UserStats:
    stmt = select(TabooGameSession).where(
        TabooGameSession.user_id == user_id,
        TabooGameSession.status == SessionStatus.COMPLETED,
    )
    iso = _language_filter(target_language)
    if iso:
        stmt = stmt.where(TabooGameSession.target_language == iso)
    sessions = list(db.scalars(stmt.order_by(TabooGameSession.created_at)))
    if not sessions:
        return UserStats()

    total = len(sessions)
    scores = [s.score or 0 for s in sessions]
    found_counts = [len(s.words_found or []) for s in sessions]
    languages: List[str] = []
    for s in sessions:
        if s.target_language not in languages:
            languages.append(s.target_language)
    words_total = sum(found_counts)
    return UserStats(
        total_games=total,
        average_score=(2 * sum(scores) + total) // (2 * total),
        best_score=max(scores),
        total_words_found=words_total,
        average_words_found=float((Decimal(words_total) / total).quantize(Decimal("0.1"), rounding=ROUND_HALF_UP)),
        languages=languages,
    )


def get_user_history(
    db: Session,
    user_id: str,
    target_language: Optional[str] = None,
    limit: Optional[int] = None,
) -> List[SessionSummary]:
    requested = settings.taboo_history_limit if limit is None else int(limit)
    capped = max(1, min(requested, settings.taboo_history_limit_max))
    stmt = select(TabooGameSession).where(
        TabooGameSession.user_id == user_id,
        TabooGameSession.status.in_([SessionStatus.IN_PROGRESS, SessionStatus.COMPLETED]),
    )
    iso = _language_filter(target_language)
    if iso:
        stmt = stmt.where(TabooGameSession.target_language == iso)
    stmt = stmt.order_by(TabooGameSession.created_at.desc(), TabooGameSession.id.desc()).limit(capped)

    summaries: List[SessionSummary] = []
    for row in db.scalars(stmt):
        card = row.card
        summaries.append(
            SessionSummary(
                id=row.id,
                answer_word=row.answer_word,
                target_language=row.target_language,
                status=row.status,
                score=row.score or 0,
                words_found=len(row.words_found or []),
                total_words=len(row.translated_key_words or []),
                created_at=row.created_at,
                card=CardSummary(category=card.category, difficulty=card.difficulty) if card else None,
            )
        )
    return summaries
