"""
Pytest fixtures for the taboo backend tests.
"""
from __future__ import annotations

import asyncio
from typing import Any, Dict, Iterator, List, Optional, Sequence

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from lingotaboo import catalog
from lingotaboo.db import Base
from lingotaboo.engine import SessionLocks, TabooEngine
from lingotaboo.models import TabooCard
from lingotaboo.oracles import Evaluation, Example, OracleUsage, Translation


def fake_usage(tokens: int = 120) -> OracleUsage:
    return OracleUsage(
        model="gemini-2.5-flash-lite",
        input_tokens=tokens - 20,
        cached_input_tokens=0,
        output_tokens=20,
        total_tokens=tokens,
    )


class FakeOracles:
    """Scripted translator/evaluator/example writer.

    ``found`` is a queue: each evaluate() call pops the words it reports.
    """

    def __init__(self, found: Optional[List[List[str]]] = None, example: str = "Runs on four wheels, fast, red and metal.") -> None:
        self.found: List[List[str]] = [list(f) for f in (found or [])]
        self.example = example
        self.direct_mention = False
        self.translation: Optional[Translation] = None
        self.translate_error: Optional[Exception] = None
        self.evaluate_error: Optional[Exception] = None
        self.example_error: Optional[Exception] = None
        self.evaluate_delay = 0.0
        self.translate_calls: List[Dict[str, Any]] = []
        self.evaluate_calls: List[Dict[str, Any]] = []
        self.example_calls: List[Dict[str, Any]] = []

    async def translate(self, key_words: Sequence[str], answer_word: str, target_language: str) -> Translation:
        self.translate_calls.append({"key_words": list(key_words), "answer_word": answer_word, "language": target_language})
        if self.translate_error is not None:
            raise self.translate_error
        if self.translation is not None:
            return self.translation
        return Translation(
            answer_word=f"{answer_word.lower()}_{target_language}",
            key_words=[f"{w.lower()}_{target_language}" for w in key_words],
            usage=fake_usage(),
        )

    async def evaluate(self, description: str, key_words: Sequence[str], answer_word: str, target_language: str) -> Evaluation:
        self.evaluate_calls.append({"description": description, "key_words": list(key_words), "answer_word": answer_word})
        if self.evaluate_delay:
            await asyncio.sleep(self.evaluate_delay)
        if self.evaluate_error is not None:
            raise self.evaluate_error
        words = self.found.pop(0) if self.found else []
        return Evaluation(
            words_found=words,
            direct_mention=self.direct_mention,
            description_quality="good",
            feedback="Nice work",
            usage=fake_usage(),
        )

    async def write_example(self, answer_word: str, key_words: Sequence[str], target_language: str) -> Example:
        self.example_calls.append({"answer_word": answer_word, "key_words": list(key_words)})
        if self.example_error is not None:
            raise self.example_error
        return Example(description=self.example, key_words_used=list(key_words), usage=fake_usage())


@pytest.fixture
def db_engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    Base.metadata.create_all(bind=engine)
    try:
        yield engine
    finally:
        engine.dispose()


@pytest.fixture
def db(db_engine) -> Iterator[Session]:
    factory = sessionmaker(bind=db_engine, autoflush=False, future=True)
    session = factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def car_card(db: Session) -> TabooCard:
    return catalog.add_card(
        db,
        "CAR",
        ["FAST", "RED", "METAL"],
        category="vehicles",
        difficulty="easy",
        language="en",
        description="Something you drive",
    )


@pytest.fixture
def oracles() -> FakeOracles:
    return FakeOracles()


@pytest.fixture
def make_engine(db: Session):
    def _make(oracles: FakeOracles, **kwargs: Any) -> TabooEngine:
        kwargs.setdefault("locks", SessionLocks())
        kwargs.setdefault("timeout", 2.0)
        kwargs.setdefault("evaluator_fallback", False)
        return TabooEngine(db, translator=oracles, evaluator=oracles, example_writer=oracles, **kwargs)

    return _make
