from __future__ import annotations
from datetime import datetime
from sqlalchemy import Boolean, Column, String, DateTime, Enum, Float, ForeignKey, Index, Integer, JSON, Text
from sqlalchemy.orm import relationship
from .db import Base
from .status import SessionStatus


class AuthUser(Base):
	__tablename__ = "auth_users"
	# Primary key is username; it doubles as the user_id everywhere else
	username = Column(String(128), primary_key=True, index=True)
	password_hash = Column(String(256), nullable=False)
	email = Column(String(256), nullable=True)
	created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
	updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)


class AuthSession(Base):
	__tablename__ = "auth_sessions"
	# jti of the issued token
	session_id = Column(String(64), primary_key=True)
	username = Column(String(128), nullable=False, index=True)
	created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
	last_activity_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class TabooCard(Base):
	__tablename__ = "taboo_cards"
	id = Column(String(64), primary_key=True)
	answer_word = Column(String(255), nullable=False, unique=True, index=True)
	# ISO code of answer_word/key_words
	language = Column(String(8), default="en", nullable=False)
	key_words = Column(JSON, nullable=False)
	category = Column(String(255), default="general", index=True)
	difficulty = Column(String(16), default="medium", nullable=False, index=True)
	description = Column(Text, nullable=True)  # optional hint
	extra = Column("metadata", JSON, nullable=True)
	is_active = Column(Boolean, default=True, nullable=False, index=True)
	usage_count = Column(Integer, default=0, nullable=False)
	created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
	updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)


class TabooGameSession(Base):
	__tablename__ = "taboo_game_sessions"
	id = Column(String(64), primary_key=True)
	# No FK: the card row is only needed for lazy detail lookups
	taboo_card_id = Column(String(64), nullable=False, index=True)
	user_id = Column(String(128), nullable=False, index=True)
	target_language = Column(String(8), nullable=False, index=True)
	answer_word = Column(String(255), nullable=False)
	original_key_words = Column(JSON, nullable=False)
	translated_key_words = Column(JSON, nullable=False)
	status = Column(
		Enum(SessionStatus, native_enum=False, length=16, values_callable=lambda e: [m.value for m in e]),
		default=SessionStatus.INITIALIZED,
		nullable=False,
		index=True,
	)
	score = Column(Integer, default=0, nullable=False)
	words_found = Column(JSON, nullable=False, default=list)
	words_missed = Column(JSON, nullable=False, default=list)
	messages = Column(JSON, nullable=False, default=list)
	user_description = Column(Text, nullable=True)
	evaluation_result = Column(JSON, nullable=True)
	ai_example_description = Column(Text, nullable=True)
	ai_usage = Column(JSON, nullable=True)
	created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)
	updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

	card = relationship(
		TabooCard,
		primaryjoin="foreign(TabooGameSession.taboo_card_id) == TabooCard.id",
		viewonly=True,
		lazy="select",
	)

	__table_args__ = (
		Index("idx_taboo_sessions_user_language", "user_id", "target_language"),
		Index("idx_taboo_sessions_user_status", "user_id", "status"),
	)


class AiUsage(Base):
	__tablename__ = "ai_usage"
	id = Column(Integer, primary_key=True, autoincrement=True)
	user_id = Column(String(128), nullable=False, index=True)
	model = Column(String(255), nullable=False)
	input_tokens = Column(Integer, default=0, nullable=False)
	cached_input_tokens = Column(Integer, default=0, nullable=False)
	output_tokens = Column(Integer, default=0, nullable=False)
	cost_usd = Column(Float, default=0.0, nullable=False)
	request_type = Column(String(64), nullable=False)
	session_id = Column(String(64), nullable=True, index=True)
	details = Column("metadata", JSON, nullable=True)
	created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
