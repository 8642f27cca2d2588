from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, Optional

from sqlalchemy.orm import Session

from .models import AiUsage
from .oracles import OracleUsage


logger = logging.getLogger(__name__)


# USD per token
PRICING: Dict[str, Dict[str, float]] = {
    "gemini-2.5-flash": {"input": 0.0000003, "cached_input": 0.000000075, "output": 0.0000025},
    "gemini-2.5-flash-lite": {"input": 0.0000001, "cached_input": 0.000000025, "output": 0.0000004},
    "gemini-2.0-flash": {"input": 0.0000001, "cached_input": 0.000000025, "output": 0.0000004},
    "gemini-2.0-flash-lite": {"input": 0.000000075, "cached_input": 0.000000075, "output": 0.0000003},
    "gemini-2.5-pro": {"input": 0.00000125, "cached_input": 0.00000031, "output": 0.00001},
}


def calculate_cost(usage: OracleUsage) -> float:
    pricing = PRICING.get(usage.model)
    if pricing is None:
        logger.warning("No pricing data available for model: %s", usage.model)
        return 0.0
    cached = min(usage.cached_input_tokens, usage.input_tokens)
    regular = usage.input_tokens - cached
    cost = (
        regular * pricing["input"]
        + cached * pricing["cached_input"]
        + usage.output_tokens * pricing["output"]
    )
    return round(cost, 5)


def combine_usage(usages: Iterable[Optional[OracleUsage]]) -> Optional[OracleUsage]:
    """Sum several oracle calls into one usage record (first model wins)."""
    total: Optional[OracleUsage] = None
    for usage in usages:
        if usage is None:
            continue
        if total is None:
            total = usage.model_copy()
            continue
        total.input_tokens += usage.input_tokens
        total.cached_input_tokens += usage.cached_input_tokens
        total.output_tokens += usage.output_tokens
        total.total_tokens += usage.total_tokens
    return total


class UsageLedger:
    """Append-only AI usage log. Writes never raise."""

    def __init__(self, db: Session) -> None:
        self.db = db

    def record(
        self,
        user_id: str,
        usage: Optional[OracleUsage],
        request_type: str,
        *,
        session_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Optional[AiUsage]:
        if usage is None or usage.total_tokens <= 0:
            return None
        cost = calculate_cost(usage)
        row = AiUsage(
            user_id=user_id,
            model=usage.model,
            input_tokens=usage.input_tokens,
            cached_input_tokens=usage.cached_input_tokens,
            output_tokens=usage.output_tokens,
            cost_usd=cost,
            request_type=request_type,
            session_id=session_id,
            details={"tokens_used": usage.total_tokens, **(metadata or {})},
        )
        try:
            self.db.add(row)
            self.db.commit()
        except Exception:
            self.db.rollback()
            logger.exception("Failed to record AI usage for %s (%s)", user_id, request_type)
            return None
        logger.info(
            "AI usage recorded: user=%s type=%s model=%s tokens=%s cost=%.5f",
            user_id, request_type, usage.model, usage.total_tokens, cost,
        )
        return row
