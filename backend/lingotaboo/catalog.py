from __future__ import annotations

import uuid
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from .errors import Inactive, NotFound, ValidationError
from .models import TabooCard
from .settings import settings


DIFFICULTIES = ("easy", "medium", "hard")


def _check_difficulty(difficulty: Optional[str]) -> Optional[str]:
    if difficulty is None:
        return None
    value = difficulty.strip().lower()
    if value not in DIFFICULTIES:
        raise ValidationError(f"difficulty must be one of {list(DIFFICULTIES)}")
    return value


def get_random_cards(
    db: Session,
    count: int = 1,
    category: Optional[str] = None,
    difficulty: Optional[str] = None,
) -> List[TabooCard]:
    # Capped to prevent abuse
    limit = max(1, min(int(count), settings.taboo_max_cards))
    stmt = select(TabooCard).where(TabooCard.is_active.is_(True))
    if category:
        stmt = stmt.where(TabooCard.category == category)
    difficulty = _check_difficulty(difficulty)
    if difficulty:
        stmt = stmt.where(TabooCard.difficulty == difficulty)
    cards = list(db.scalars(stmt.order_by(func.random()).limit(limit)))
    if not cards:
        raise NotFound("No taboo cards found matching the criteria")
    return cards


def get_categories(db: Session) -> List[str]:
    stmt = (
        select(TabooCard.category)
        .where(TabooCard.is_active.is_(True), TabooCard.category.is_not(None))
        .distinct()
        .order_by(TabooCard.category)
    )
    return list(db.scalars(stmt))


def get_card(db: Session, card_id: str) -> TabooCard:
    card = db.get(TabooCard, card_id)
    if card is None:
        raise NotFound("Taboo card not found")
    return card


def get_playable_card(db: Session, card_id: str) -> TabooCard:
    card = get_card(db, card_id)
    if not card.is_active:
        raise Inactive("This card is not currently active")
    return card


def increment_usage(db: Session, card_id: str) -> None:
    """Bump usage_count in SQL so concurrent starts never lose an increment.

    Does not commit; the caller commits together with the new session.
    """
    db.execute(
        update(TabooCard)
        .where(TabooCard.id == card_id)
        .values(usage_count=TabooCard.usage_count + 1)
        .execution_options(synchronize_session=False)
    )


def normalize_card_words(answer_word: str, key_words: Sequence[str]) -> List[str]:
    answer = (answer_word or "").strip()
    if not answer:
        raise ValidationError("answer_word is required")
    words = [str(w).strip() for w in key_words or []]
    if not words or any(not w for w in words):
        raise ValidationError("key_words must be a non-empty list of words")
    folded = [w.casefold() for w in words]
    if len(set(folded)) != len(folded):
        raise ValidationError("key_words must not contain duplicates")
    if answer.casefold() in folded:
        raise ValidationError("key_words must not contain the answer word")
    return words


def add_card(
    db: Session,
    answer_word: str,
    key_words: Sequence[str],
    *,
    category: str = "general",
    difficulty: str = "medium",
    language: Optional[str] = None,
    description: Optional[str] = None,
    extra: Optional[Dict[str, Any]] = None,
    is_active: bool = True,
    card_id: Optional[str] = None,
) -> TabooCard:
    words = normalize_card_words(answer_word, key_words)
    card = TabooCard(
        id=card_id or uuid.uuid4().hex,
        answer_word=answer_word.strip(),
        key_words=words,
        category=(category or "general").strip(),
        difficulty=_check_difficulty(difficulty) or "medium",
        language=(language or settings.taboo_card_language).lower(),
        description=description,
        extra=extra,
        is_active=is_active,
        usage_count=0,
    )
    db.add(card)
    db.commit()
    db.refresh(card)
    return card


def card_to_dict(card: TabooCard) -> Dict[str, Any]:
    return {
        "id": card.id,
        "answer_word": card.answer_word,
        "key_words": list(card.key_words or []),
        "language": card.language,
        "category": card.category,
        "difficulty": card.difficulty,
        "description": card.description,
        "usage_count": card.usage_count,
    }
