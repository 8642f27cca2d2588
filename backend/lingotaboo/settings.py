from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field

class Settings(BaseSettings):
	gemini_api_key: str | None = Field(default=None, validation_alias="GEMINI_API_KEY")
	# Provider can be "vertex" (Vertex AI Express) or "ai_studio" (Generative Language API)
	gemini_provider: str = Field(default="ai_studio", validation_alias="GEMINI_PROVIDER")
	gemini_model: str = Field(default="gemini-2.5-flash", validation_alias="GEMINI_MODEL")
	# Optional: model override for translation/evaluation/example calls
	gemini_model_taboo: str | None = Field(default=None, validation_alias="GEMINI_MODEL_TABOO")
	vertex_region: str = Field(default="us-central1", validation_alias="GEMINI_VERTEX_REGION")
	vertex_project: str | None = Field(default=None, validation_alias="GEMINI_VERTEX_PROJECT")

	# OpenRouter fallback configuration (optional)
	openrouter_api_key: str | None = Field(default=None, validation_alias="OPENROUTER_API_KEY")
	openrouter_model: str = Field(default="x-ai/grok-4-fast:free", validation_alias="OPENROUTER_MODEL")
	openrouter_base_url: str = Field(default="https://openrouter.ai/api/v1/chat/completions", validation_alias="OPENROUTER_BASE_URL")
	openrouter_referer: str = Field(default="https://localhost", validation_alias="OPENROUTER_HTTP_REFERER")
	openrouter_title: str = Field(default="Lingo Taboo", validation_alias="OPENROUTER_TITLE")

	jwt_secret_key: str = Field(default="change-me", validation_alias="JWT_SECRET_KEY")
	jwt_algorithm: str = Field(default="HS256", validation_alias="JWT_ALGORITHM")
	access_token_expire_minutes: int = Field(default=120, validation_alias="ACCESS_TOKEN_EXPIRE_MINUTES")
	seed_username: str | None = Field(default=None, validation_alias="SEED_USERNAME")
	seed_password_plain: str | None = Field(default=None, validation_alias="SEED_PASSWORD")

	database_url: str | None = Field(default=None, validation_alias="DATABASE_URL")

	# Upper bound for any single translator/evaluator/example call
	oracle_timeout_seconds: float = Field(default=30.0, validation_alias="TABOO_ORACLE_TIMEOUT_SECONDS")

	# Game rules
	taboo_max_cards: int = Field(default=10, validation_alias="TABOO_MAX_CARDS")
	taboo_history_limit: int = Field(default=10, validation_alias="TABOO_HISTORY_LIMIT")
	taboo_history_limit_max: int = Field(default=50, validation_alias="TABOO_HISTORY_LIMIT_MAX")
	taboo_min_description_chars: int = Field(default=5, validation_alias="TABOO_MIN_DESCRIPTION_CHARS")
	taboo_max_description_chars: int = Field(default=2000, validation_alias="TABOO_MAX_DESCRIPTION_CHARS")
	# ISO code assumed for cards that do not declare their own language
	taboo_card_language: str = Field(default="en", validation_alias="TABOO_CARD_LANGUAGE")
	# When enabled, an unreachable evaluator degrades to plain substring matching
	taboo_evaluator_fallback: bool = Field(default=False, validation_alias="TABOO_EVALUATOR_FALLBACK")
	# Sessions idle for longer than this are abandoned (0 disables the sweep)
	taboo_idle_abandon_hours: int = Field(default=0, validation_alias="TABOO_IDLE_ABANDON_HOURS")

	model_config = SettingsConfigDict(env_file=".env", extra="ignore")

settings = Settings()
