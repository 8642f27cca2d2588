from __future__ import annotations
import logging
from datetime import datetime, timedelta
from typing import Optional
from sqlalchemy import select
from sqlalchemy.orm import Session

from .engine import abandon_session
from .models import TabooGameSession
from .settings import settings
from .status import SessionStatus


logger = logging.getLogger(__name__)


async def abandon_idle_sessions(db: Session, older_than_hours: Optional[int] = None) -> int:
	hours = settings.taboo_idle_abandon_hours if older_than_hours is None else older_than_hours
	if hours <= 0:
		return 0
	threshold = datetime.utcnow() - timedelta(hours=hours)
	# Rows are never deleted; idle open sessions just become terminal
	stmt = select(TabooGameSession.id).where(
		TabooGameSession.status.in_([SessionStatus.INITIALIZED, SessionStatus.IN_PROGRESS]),
		TabooGameSession.updated_at < threshold,
	)
	abandoned = 0
	for session_id in list(db.scalars(stmt)):
		if await abandon_session(db, session_id, reason="Session abandoned after inactivity", idle_before=threshold):
			abandoned += 1
	if abandoned:
		logger.info("Abandoned %s idle taboo sessions (idle > %sh)", abandoned, hours)
	return abandoned
