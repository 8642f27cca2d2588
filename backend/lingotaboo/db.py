from __future__ import annotations
from sqlalchemy import create_engine, inspect
from sqlalchemy.orm import sessionmaker, declarative_base
from .settings import settings


DATABASE_URL = settings.database_url or "sqlite:///./taboo.db"

_connect_args = {"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {}

engine = create_engine(DATABASE_URL, connect_args=_connect_args, future=True)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine, future=True)
Base = declarative_base()


def get_db():
	db = SessionLocal()
	try:
		yield db
	finally:
		db.close()


# Additive column upgrades for databases created by older builds (SQLite-friendly)
_COLUMN_UPGRADES = {
	"taboo_cards": {
		"language": "ALTER TABLE taboo_cards ADD COLUMN language VARCHAR(8) DEFAULT 'en' NOT NULL",
		"description": "ALTER TABLE taboo_cards ADD COLUMN description TEXT",
	},
	"taboo_game_sessions": {
		"ai_usage": "ALTER TABLE taboo_game_sessions ADD COLUMN ai_usage JSON",
	},
	"auth_users": {
		"email": "ALTER TABLE auth_users ADD COLUMN email VARCHAR(256)",
	},
}


def ensure_schema(bind=None) -> None:
	bind = bind or engine
	try:
		inspector = inspect(bind)
		tables = set(inspector.get_table_names())
	except Exception:
		return
	for table, upgrades in _COLUMN_UPGRADES.items():
		if table not in tables:
			continue
		cols = {c["name"] for c in inspector.get_columns(table)}
		with bind.begin() as conn:
			for column, ddl in upgrades.items():
				if column not in cols:
					conn.exec_driver_sql(ddl)
