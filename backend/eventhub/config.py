import json

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_ALLOWED_ORIGINS = [
    "http://localhost:3000",
    "http://127.0.0.1:3000",
    "http://localhost:5173",
    "http://127.0.0.1:5173"
]

DEFAULT_ASSISTANT_SYSTEM_PROMPT = (
    "You are EventBuddy, the assistant for the Community Event Hub admin dashboard. "
    "Answer questions about events, registrations and users using the statistics provided. "
    "Be helpful, concise, and friendly."
)


def _split_list(value, normalize=lambda item: item):
    """Accept a JSON list, a comma-separated string or a sequence; drop blanks."""
    if isinstance(value, str):
        try:
            parsed = json.loads(value)
        except json.JSONDecodeError:
            parsed = value.split(",")
        if not isinstance(parsed, list):
            parsed = [value]
        value = parsed
    if not isinstance(value, (list, tuple)):
        return None
    items = [normalize(str(item).strip()) for item in value if item is not None]
    return [item for item in items if item]


class Settings(BaseSettings):
    database_url: str
    secret_key: str
    algorithm: str = "HS256"
    access_token_expire_minutes: int = 30
    refresh_token_expire_minutes: int = 60 * 24 * 30
    allowed_origins: list[str] = DEFAULT_ALLOWED_ORIGINS
    admin_emails: list[str] = []
    auto_create_tables: bool = False
    auto_run_migrations: bool = False

    email_enabled: bool = True
    smtp_host: str | None = None
    smtp_port: int = 25
    smtp_username: str | None = None
    smtp_password: str | None = None
    smtp_sender: str | None = None
    smtp_use_tls: bool = True
    smtp_timeout_seconds: float = 10.0
    smtp_max_attempts: int = 3

    recommendations_default_limit: int = 4
    recommendations_candidate_limit: int = 20
    recommendations_similar_users: int = 10
    recommendations_max_distance_km: float = 50.0

    # "embedded" parses "(lat,lng)" suffixes; "nominatim" asks OpenStreetMap first.
    geocoder_backend: str = "embedded"
    geocoder_user_agent: str = "eventhub"
    geocoder_timeout_seconds: int = 5

    assistant_api_url: str | None = None
    assistant_api_key: str | None = None
    assistant_model: str = "gpt-4o-mini"
    assistant_system_prompt: str = DEFAULT_ASSISTANT_SYSTEM_PROMPT
    assistant_timeout_seconds: float = 30.0

    # List fields arrive as raw strings; the validators below decode them.
    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
        case_sensitive=False,
        enable_decoding=False,
        env_ignore_empty=True,
    )

    @field_validator("allowed_origins", mode="before")
    @classmethod
    def parse_allowed_origins(cls, value):
        if value is None or value == "":
            return list(DEFAULT_ALLOWED_ORIGINS)
        origins = _split_list(value)
        if origins is None:
            raise ValueError("allowed_origins must be a list or comma-separated string")
        return origins

    @field_validator("admin_emails", mode="before")
    @classmethod
    def parse_admin_emails(cls, value):
        if value is None or value == "":
            return []
        emails = _split_list(value, str.lower)
        if emails is None:
            raise ValueError("admin_emails must be a list or comma-separated string")
        return emails

    @field_validator("geocoder_backend", mode="before")
    @classmethod
    def parse_geocoder_backend(cls, value):
        if value is None or value == "":
            return "embedded"
        backend = str(value).strip().lower()
        if backend not in {"embedded", "nominatim"}:
            raise ValueError("geocoder_backend must be 'embedded' or 'nominatim'")
        return backend

    @field_validator("smtp_max_attempts")
    @classmethod
    def at_least_one_attempt(cls, value: int) -> int:
        return max(1, value)


settings = Settings()
