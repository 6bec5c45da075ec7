from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field

class Settings(BaseSettings):
	# Database; falls back to a local SQLite file when unset
	database_url: str | None = Field(default=None, validation_alias="DATABASE_URL")

	log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")

	# Placeholder lifecycle: pending rows older than this are abandoned by the sweep
	placeholder_stale_minutes: int = Field(default=60, validation_alias="PLACEHOLDER_STALE_MINUTES")
	# Interval of the background sweep; 0 disables it
	placeholder_sweep_seconds: int = Field(default=300, validation_alias="PLACEHOLDER_SWEEP_SECONDS")

	# Optional demo tenant created at startup
	seed_school_slug: str | None = Field(default=None, validation_alias="SEED_SCHOOL_SLUG")
	seed_school_name: str = Field(default="Demo School", validation_alias="SEED_SCHOOL_NAME")

	gemini_api_key: str | None = Field(default=None, validation_alias="GEMINI_API_KEY")
	# Provider can be "vertex" (Vertex AI Express) or "ai_studio" (Generative Language API)
	gemini_provider: str = Field(default="ai_studio", validation_alias="GEMINI_PROVIDER")
	gemini_model: str = Field(default="gemini-2.5-flash", validation_alias="GEMINI_MODEL")
	vertex_region: str = Field(default="us-central1", validation_alias="GEMINI_VERTEX_REGION")
	vertex_project: str | None = Field(default=None, validation_alias="GEMINI_VERTEX_PROJECT")

	# OpenRouter fallback configuration (optional)
	openrouter_api_key: str | None = Field(default=None, validation_alias="OPENROUTER_API_KEY")
	openrouter_model: str = Field(default="openai/gpt-4o-mini", validation_alias="OPENROUTER_MODEL")
	openrouter_base_url: str = Field(default="https://openrouter.ai/api/v1/chat/completions", validation_alias="OPENROUTER_BASE_URL")
	openrouter_referer: str = Field(default="https://localhost", validation_alias="OPENROUTER_HTTP_REFERER")
	openrouter_title: str = Field(default="MySpeakingScore Widget", validation_alias="OPENROUTER_TITLE")

	model_config = SettingsConfigDict(env_file=".env", extra="ignore")

settings = Settings()
