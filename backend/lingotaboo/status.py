"""Lifecycle of a taboo game session.

    initialized -> in_progress -> completed
         |              |
         +--------------+-> abandoned   (idle sweep only)

``completed`` and ``abandoned`` are terminal: nothing leaves them.
"""
from __future__ import annotations

import enum
from typing import Dict, FrozenSet

from .errors import AlreadyCompleted, ValidationError


class SessionStatus(str, enum.Enum):
	INITIALIZED = "initialized"
	IN_PROGRESS = "in_progress"
	COMPLETED = "completed"
	ABANDONED = "abandoned"

	@property
	def is_terminal(self) -> bool:
		return self in (SessionStatus.COMPLETED, SessionStatus.ABANDONED)


_TRANSITIONS: Dict[SessionStatus, FrozenSet[SessionStatus]] = {
	SessionStatus.INITIALIZED: frozenset({SessionStatus.IN_PROGRESS, SessionStatus.COMPLETED, SessionStatus.ABANDONED}),
	# in_progress -> in_progress is every non-final submission
	SessionStatus.IN_PROGRESS: frozenset({SessionStatus.IN_PROGRESS, SessionStatus.COMPLETED, SessionStatus.ABANDONED}),
	SessionStatus.COMPLETED: frozenset(),
	SessionStatus.ABANDONED: frozenset(),
}


def ensure_open(current: SessionStatus) -> None:
	current = SessionStatus(current)
	if current is SessionStatus.COMPLETED:
		raise AlreadyCompleted("This game session has already been completed")
	if current is SessionStatus.ABANDONED:
		raise AlreadyCompleted("This game session was abandoned")


def transition(current: SessionStatus, target: SessionStatus) -> SessionStatus:
	"""Return ``target`` if the edge is legal, raise otherwise."""
	current = SessionStatus(current)
	target = SessionStatus(target)
	ensure_open(current)
	if target not in _TRANSITIONS[current]:
		raise ValidationError(f"cannot move a session from {current.value} to {target.value}")
	return target
