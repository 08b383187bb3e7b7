"""Runtime settings and the model list.

Secrets come from the environment (a ``.env`` file is loaded at startup),
everything static lives in ``models.yml``.
"""

import os
from pathlib import Path

import yaml
from pydantic import BaseModel, Field

from chattree.models import ModelConfig

_MODELS_PATH = Path(__file__).resolve().parent / "models.yml"


class Settings(BaseModel):
    database_path: str = "chattree.db"
    files_dir: str = "uploads"
    models_path: str = str(_MODELS_PATH)
    default_model: str | None = None
    search_timeout_s: float = 10.0
    title_timeout_s: float = 5.0
    max_query_attempts: int = 3
    search_results: int = 5
    channel_size: int = 64
    messages_per_conversation: int | None = None
    message_max_length: int | None = None
    cors_origins: list[str] = Field(default_factory=lambda: ["http://localhost:5173"])


_ENV_KEYS = {
    "database_path": "CHATTREE_DATABASE_PATH",
    "files_dir": "CHATTREE_FILES_DIR",
    "models_path": "CHATTREE_MODELS_PATH",
    "default_model": "CHATTREE_DEFAULT_MODEL",
    "search_timeout_s": "CHATTREE_SEARCH_TIMEOUT",
    "title_timeout_s": "CHATTREE_TITLE_TIMEOUT",
    "max_query_attempts": "CHATTREE_MAX_QUERY_ATTEMPTS",
    "search_results": "CHATTREE_SEARCH_RESULTS",
    "channel_size": "CHATTREE_CHANNEL_SIZE",
    "messages_per_conversation": "CHATTREE_MESSAGES_PER_CONVERSATION",
    "message_max_length": "CHATTREE_MESSAGE_MAX_LENGTH",
}


def load_settings(environ: dict[str, str] | None = None) -> Settings:
    """Build Settings from ``CHATTREE_*`` environment variables. Unset keys keep defaults."""
    env = os.environ if environ is None else environ
    values: dict = {field: env[key] for field, key in _ENV_KEYS.items() if env.get(key)}
    if env.get("CHATTREE_CORS_ORIGINS"):
        values["cors_origins"] = [
            origin.strip() for origin in env["CHATTREE_CORS_ORIGINS"].split(",") if origin.strip()
        ]
    return Settings.model_validate(values)


def load_model_configs(path: str | Path = _MODELS_PATH) -> dict[str, ModelConfig]:
    """Parse the model list, keyed by model id. Raises ValueError on duplicate ids."""
    with open(path) as f:
        data = yaml.safe_load(f) or {}

    configs: dict[str, ModelConfig] = {}
    for entry in data.get("models", []):
        config = ModelConfig.model_validate(entry)
        if config.id in configs:
            raise ValueError(f"Duplicate model id in {path}: {config.id}")
        configs[config.id] = config
    return configs
