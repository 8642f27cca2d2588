"""Taboo game session engine.

A session is one player's attempt at one card in one practice language. Each
submission is judged by the evaluator and folded into the session's cumulative
``words_found``; the session completes when every translated key word has been
found, or when the player finishes explicitly.

All mutations of one session run under a per-session ``asyncio.Lock`` and
re-read the row after acquiring it, so concurrent submits cannot lose words.
Oracle calls are bounded by ``settings.oracle_timeout_seconds``.
"""
from __future__ import annotations

import asyncio
import logging
import uuid
import weakref
from datetime import datetime, timezone
from typing import Any, Awaitable, Dict, List, Optional, Sequence, TypeVar

from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.orm import Session

from . import catalog
from .errors import EvaluationFailed, NotFound, TranslationFailed, ValidationError
from .languages import resolve_language
from .models import TabooGameSession
from .oracles import (
    Evaluation,
    Evaluator,
    Example,
    ExampleWriter,
    OracleUsage,
    Translator,
    WordDetail,
    match_key_words,
    substring_evaluation,
    validate_translation,
)
from .settings import settings
from .status import SessionStatus, ensure_open, transition
from .usage import UsageLedger, calculate_cost, combine_usage


logger = logging.getLogger(__name__)

T = TypeVar("T")

ATTEMPT = "description_submitted"
COMPLETED = "game_completed"
FINISHED = "game_finished"
ABANDONED = "game_abandoned"


class SessionLocks:
    """One lock per session id; entries vanish once nobody holds them."""

    def __init__(self) -> None:
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    def for_session(self, session_id: str) -> asyncio.Lock:
        lock = self._locks.get(session_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[session_id] = lock
        return lock


session_locks = SessionLocks()


def compute_score(found: int, total: int) -> int:
    """Percentage of key words found, rounded half up, clamped to 0..100."""
    if total <= 0:
        return 0
    score = (200 * found + total) // (2 * total)
    return max(0, min(100, score))


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _message(kind: str, content: str, metadata: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    return {"type": kind, "content": content, "metadata": metadata or {}, "timestamp": _now()}


def _attempts(row: TabooGameSession) -> List[Dict[str, Any]]:
    return [m for m in (row.messages or []) if m.get("type") == ATTEMPT]


def _missed(translated: Sequence[str], found: Sequence[str]) -> List[str]:
    found_set = set(found)
    return [w for w in translated if w not in found_set]


def _add_usage(row: TabooGameSession, usage: Optional[OracleUsage]) -> None:
    if usage is None:
        return
    summary = dict(row.ai_usage or {})
    summary["calls"] = summary.get("calls", 0) + 1
    summary["total_tokens"] = summary.get("total_tokens", 0) + usage.total_tokens
    summary["cost_usd"] = round(summary.get("cost_usd", 0.0) + calculate_cost(usage), 5)
    # Reassign so the JSON column is flagged dirty
    row.ai_usage = summary


class SessionSnapshot(BaseModel):
    id: str
    card_id: str
    answer_word: str
    original_key_words: List[str]
    translated_key_words: List[str]
    target_language: str
    status: SessionStatus
    created_at: Optional[datetime] = None


class SubmitResult(BaseModel):
    session_id: str
    attempt: int
    words_found_this_attempt: List[str]
    words_found: List[str]
    words_missed: List[str]
    progress: int
    score: int
    status: SessionStatus
    is_game_complete: bool
    answer_word_mentioned: bool
    fallback: bool = False
    feedback: str = ""
    suggestions: List[str] = Field(default_factory=list)
    word_details: List[WordDetail] = Field(default_factory=list)
    example: Optional[str] = None


class FinishResult(BaseModel):
    session_id: str
    status: SessionStatus
    words_found: List[str]
    words_missed: List[str]
    score: int
    attempts: int
    total_words: int
    example: Optional[str] = None


class CardInfo(BaseModel):
    category: Optional[str] = None
    difficulty: Optional[str] = None
    description: Optional[str] = None


class SessionDetail(BaseModel):
    id: str
    card_id: str
    answer_word: str
    original_key_words: List[str]
    translated_key_words: List[str]
    target_language: str
    status: SessionStatus
    score: int
    words_found: List[str]
    words_missed: List[str]
    user_description: Optional[str] = None
    evaluation_result: Optional[Dict[str, Any]] = None
    ai_example_description: Optional[str] = None
    messages: List[Dict[str, Any]] = Field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    card: Optional[CardInfo] = None

    @classmethod
    def from_row(cls, row: TabooGameSession) -> "SessionDetail":
        card = row.card
        return cls(
            id=row.id,
            card_id=row.taboo_card_id,
            answer_word=row.answer_word,
            original_key_words=list(row.original_key_words or []),
            translated_key_words=list(row.translated_key_words or []),
            target_language=row.target_language,
            status=row.status,
            score=row.score or 0,
            words_found=list(row.words_found or []),
            words_missed=list(row.words_missed or []),
            user_description=row.user_description,
            evaluation_result=row.evaluation_result,
            ai_example_description=row.ai_example_description,
            messages=list(row.messages or []),
            created_at=row.created_at,
            updated_at=row.updated_at,
            card=CardInfo(category=card.category, difficulty=card.difficulty, description=card.description) if card else None,
        )


def load_owned_session(db: Session, session_id: str, user_id: str) -> TabooGameSession:
    # Another user's session is reported exactly like a missing one
    stmt = (
        select(TabooGameSession)
        .where(TabooGameSession.id == session_id, TabooGameSession.user_id == user_id)
        .execution_options(populate_existing=True)
    )
    row = db.scalars(stmt).first()
    if row is None:
        raise NotFound("Game session not found or does not belong to current user")
    return row


async def abandon_session(
    db: Session,
    session_id: str,
    *,
    reason: str,
    idle_before: Optional[datetime] = None,
    locks: SessionLocks = session_locks,
) -> bool:
    """Move an open session to ``abandoned``. Returns False if it was not eligible."""
    async with locks.for_session(session_id):
        stmt = (
            select(TabooGameSession)
            .where(TabooGameSession.id == session_id)
            .execution_options(populate_existing=True)
        )
        row = db.scalars(stmt).first()
        if row is None or SessionStatus(row.status).is_terminal:
            return False
        if idle_before is not None and row.updated_at is not None and row.updated_at >= idle_before:
            return False
        row.status = transition(row.status, SessionStatus.ABANDONED)
        attempts = len(_attempts(row))
        row.messages = list(row.messages or []) + [
            _message(ABANDONED, reason, {"attempts": attempts, "score": row.score or 0})
        ]
        db.commit()
        return True


class TabooEngine:
    def __init__(
        self,
        db: Session,
        translator: Translator,
        evaluator: Evaluator,
        example_writer: ExampleWriter,
        *,
        ledger: Optional[UsageLedger] = None,
        locks: Optional[SessionLocks] = None,
        timeout: Optional[float] = None,
        evaluator_fallback: Optional[bool] = None,
    ) -> None:
        self.db = db
        self.translator = translator
        self.evaluator = evaluator
        self.example_writer = example_writer
        self.ledger = ledger or UsageLedger(db)
        self.locks = locks or session_locks
        self.timeout = settings.oracle_timeout_seconds if timeout is None else timeout
        self.evaluator_fallback = settings.taboo_evaluator_fallback if evaluator_fallback is None else evaluator_fallback

    async def _call(self, awaitable: Awaitable[T]) -> T:
        if self.timeout and self.timeout > 0:
            return await asyncio.wait_for(awaitable, self.timeout)
        return await awaitable

    def _validate_description(self, description: Optional[str]) -> str:
        if not isinstance(description, str):
            raise ValidationError("description is required and must be a string")
        text = description.strip()
        if len(text) < settings.taboo_min_description_chars:
            raise ValidationError(f"description must be at least {settings.taboo_min_description_chars} characters")
        if len(text) > settings.taboo_max_description_chars:
            raise ValidationError(f"description must be at most {settings.taboo_max_description_chars} characters")
        return text

    async def start_session(self, card_id: str, user_id: str, target_language: str) -> SessionSnapshot:
        language = resolve_language(target_language)
        card = catalog.get_playable_card(self.db, card_id)
        original = list(card.key_words or [])
        answer_word = card.answer_word
        translated = list(original)
        usage: Optional[OracleUsage] = None

        if (card.language or settings.taboo_card_language).lower() != language.iso_code:
            try:
                translation = await self._call(self.translator.translate(original, answer_word, language.iso_code))
                validate_translation(translation, len(original))
            except Exception as exc:
                logger.warning("Translation failed for card %s into %s: %s", card.id, language.iso_code, exc)
                raise TranslationFailed("Failed to translate key words") from exc
            answer_word = translation.answer_word.strip()
            translated = [w.strip() for w in translation.key_words]
            usage = translation.usage

        row = TabooGameSession(
            id=uuid.uuid4().hex,
            taboo_card_id=card.id,
            user_id=user_id,
            target_language=language.iso_code,
            answer_word=answer_word,
            original_key_words=original,
            translated_key_words=translated,
            status=SessionStatus.INITIALIZED,
            score=0,
            words_found=[],
            words_missed=list(translated),
            messages=[],
        )
        _add_usage(row, usage)
        try:
            self.db.add(row)
            catalog.increment_usage(self.db, card.id)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        logger.info("Taboo session %s started by %s (card %s, %s)", row.id, user_id, card.id, language.iso_code)

        self.ledger.record(
            user_id,
            usage,
            "taboo_session_start",
            session_id=row.id,
            metadata={"target_language": language.iso_code, "card_id": card.id},
        )
        return SessionSnapshot(
            id=row.id,
            card_id=row.taboo_card_id,
            answer_word=row.answer_word,
            original_key_words=original,
            translated_key_words=translated,
            target_language=row.target_language,
            status=row.status,
            created_at=row.created_at,
        )

    async def _evaluate(self, row: TabooGameSession, description: str) -> Evaluation:
        key_words = list(row.translated_key_words or [])
        try:
            return await self._call(
                self.evaluator.evaluate(description, key_words, row.answer_word, row.target_language)
            )
        except Exception as exc:
            if not self.evaluator_fallback:
                logger.warning("Evaluation failed for session %s: %s", row.id, exc)
                raise EvaluationFailed("Failed to evaluate the description, please try again") from exc
            logger.warning("Evaluator unavailable for session %s, matching literally: %s", row.id, exc)
            return substring_evaluation(description, key_words, row.answer_word)

    async def _maybe_example(self, row: TabooGameSession) -> Optional[Example]:
        # Bonus content: failures are logged and dropped
        if row.ai_example_description:
            return None
        try:
            example = await self._call(
                self.example_writer.write_example(
                    row.answer_word, list(row.translated_key_words or []), row.target_language
                )
            )
        except Exception as exc:
            logger.warning("Example generation failed for session %s: %s", row.id, exc)
            return None
        if not example.description.strip():
            return None
        row.ai_example_description = example.description.strip()
        return example

    async def submit(
        self,
        session_id: str,
        user_id: str,
        description: Optional[str],
        include_example: bool = False,
    ) -> SubmitResult:
        async with self.locks.for_session(session_id):
            row = load_owned_session(self.db, session_id, user_id)
            ensure_open(row.status)
            text = self._validate_description(description)

            if row.status == SessionStatus.INITIALIZED:
                row.status = transition(row.status, SessionStatus.IN_PROGRESS)
                self.db.commit()

            evaluation = await self._evaluate(row, text)

            translated = list(row.translated_key_words or [])
            reported = match_key_words(evaluation.words_found, translated)
            previous = set(row.words_found or [])
            this_attempt = [w for w in reported if w not in previous]
            cumulative_set = previous | set(reported)
            cumulative = [w for w in translated if w in cumulative_set]
            missed = _missed(translated, cumulative)
            score = compute_score(len(cumulative), len(translated))
            complete = len(cumulative) == len(translated)
            attempt = len(_attempts(row)) + 1

            messages = list(row.messages or [])
            messages.append(
                _message(
                    ATTEMPT,
                    text,
                    {
                        "attempt": attempt,
                        "words_found_this_attempt": this_attempt,
                        "words_found_total": cumulative,
                        "words_missed": missed,
                        "score": score,
                        "answer_word_mentioned": evaluation.direct_mention,
                        "fallback": evaluation.fallback,
                        "evaluation": evaluation.payload(),
                    },
                )
            )
            row.words_found = cumulative
            row.words_missed = missed
            row.score = score
            row.status = transition(row.status, SessionStatus.COMPLETED if complete else SessionStatus.IN_PROGRESS)
            _add_usage(row, evaluation.usage)

            example: Optional[Example] = None
            if complete:
                row.user_description = text
                row.evaluation_result = {
                    "words_found": cumulative,
                    "words_missed": missed,
                    "score": score,
                    "attempts": attempt,
                    "finished_by_user": False,
                    "fallback": evaluation.fallback,
                    "evaluation": evaluation.payload(),
                }
                messages.append(
                    _message(
                        COMPLETED,
                        "Game completed",
                        {"score": score, "words_found": len(cumulative), "total_words": len(translated), "attempts": attempt},
                    )
                )
                if include_example:
                    example = await self._maybe_example(row)
                    if example is not None:
                        _add_usage(row, example.usage)
            row.messages = messages
            self.db.commit()
            if complete:
                logger.info("Taboo session %s completed after %s attempts", row.id, attempt)

        self.ledger.record(
            user_id,
            combine_usage([evaluation.usage, example.usage if example else None]),
            "taboo_session_submit",
            session_id=session_id,
            metadata={
                "target_language": row.target_language,
                "attempt": attempt,
                "is_complete": complete,
                "included_example": example is not None,
            },
        )
        return SubmitResult(
            session_id=session_id,
            attempt=attempt,
            words_found_this_attempt=this_attempt,
            words_found=cumulative,
            words_missed=missed,
            progress=score,
            score=score,
            status=row.status,
            is_game_complete=complete,
            answer_word_mentioned=evaluation.direct_mention,
            fallback=evaluation.fallback,
            feedback=evaluation.feedback,
            suggestions=list(evaluation.suggestions),
            word_details=list(evaluation.word_details),
            example=example.description.strip() if example else None,
        )

    async def finish(self, session_id: str, user_id: str, include_example: bool = False) -> FinishResult:
        async with self.locks.for_session(session_id):
            row = load_owned_session(self.db, session_id, user_id)
            ensure_open(row.status)
            attempts = _attempts(row)
            if not attempts:
                raise ValidationError("cannot finish a session with zero attempts")

            translated = list(row.translated_key_words or [])
            found = list(row.words_found or [])
            missed = _missed(translated, found)
            score = compute_score(len(found), len(translated))
            last = attempts[-1]

            row.status = transition(row.status, SessionStatus.COMPLETED)
            row.words_missed = missed
            row.score = score
            row.user_description = last.get("content")
            row.evaluation_result = {
                "words_found": found,
                "words_missed": missed,
                "score": score,
                "attempts": len(attempts),
                "finished_by_user": True,
                "evaluation": (last.get("metadata") or {}).get("evaluation"),
            }
            example = await self._maybe_example(row) if include_example else None
            if example is not None:
                _add_usage(row, example.usage)
            row.messages = list(row.messages or []) + [
                _message(
                    FINISHED,
                    f"Game finished by user after {len(attempts)} attempts",
                    {"attempts": len(attempts), "score": score, "words_found": len(found), "total_words": len(translated)},
                )
            ]
            self.db.commit()
            logger.info("Taboo session %s finished by user with score %s", row.id, score)

        if example is not None:
            self.ledger.record(
                user_id,
                example.usage,
                "taboo_session_finish",
                session_id=session_id,
                metadata={"target_language": row.target_language, "attempts": len(attempts), "is_complete": True},
            )
        return FinishResult(
            session_id=session_id,
            status=row.status,
            words_found=found,
            words_missed=missed,
            score=score,
            attempts=len(attempts),
            total_words=len(translated),
            example=example.description.strip() if example else None,
        )

    def get_session(self, session_id: str, user_id: str) -> SessionDetail:
        return SessionDetail.from_row(load_owned_session(self.db, session_id, user_id))
