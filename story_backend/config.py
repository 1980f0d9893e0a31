"""Configuration management for the story backend."""

import os
from pathlib import Path
from typing import Literal

import yaml
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


# Paths
DEFAULT_CONFIG_PATH = Path("~/.story-backend/config.yaml").expanduser()
DEFAULT_DB_PATH = Path("~/.story-backend/story.db").expanduser()
LOCAL_CONFIG_FILENAME = "config.yaml"


class EmbeddingConfig(BaseModel):
    """Embedding provider configuration."""

    provider: Literal["ollama", "local_hash"] = "ollama"
    host: str = "http://127.0.0.1:11434"
    model: str = "qwen3-embedding:0.6b"
    timeout: float = 60.0
    fallback_endpoint: bool = True
    local_dimensions: int = 256


class StorageConfig(BaseModel):
    """SQLite storage configuration."""

    path: str = str(DEFAULT_DB_PATH)
    delete_batch_size: int = 200
    insert_batch_size: int = 200


class RebuildConfig(BaseModel):
    """Embedding rebuild configuration."""

    progress_interval: int = 25
    # -1 embeds every paragraph
    max_paragraphs_per_message: int = -1


class SearchConfig(BaseModel):
    """Semantic search defaults."""

    limit: int = 10
    min_score: float = 0.0
    context_paragraphs: int = 1


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = "INFO"
    format: str = "console"


class Config(BaseSettings):
    """Main configuration for the story backend."""

    embedding: EmbeddingConfig = Field(default_factory=EmbeddingConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    rebuild: RebuildConfig = Field(default_factory=RebuildConfig)
    search: SearchConfig = Field(default_factory=SearchConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = SettingsConfigDict(
        env_prefix="STORY_",
        env_file=".env",
        env_nested_delimiter="__",
    )

    @classmethod
    def resolve_default_config_path(cls) -> Path:
        """Resolve default config path with local-first precedence."""
        local_path = Path.cwd() / LOCAL_CONFIG_FILENAME
        if local_path.exists():
            return local_path
        return DEFAULT_CONFIG_PATH

    @classmethod
    def from_yaml(cls, path: Path | str | None = None) -> "Config":
        """Load configuration from YAML file."""
        config_path = Path(path).expanduser() if path else cls.resolve_default_config_path()

        if not config_path.exists():
            return cls()

        with open(config_path) as f:
            data = yaml.safe_load(f) or {}

        return cls(**data)

    @classmethod
    def load(cls, path: Path | str | None = None) -> "Config":
        """Load configuration from YAML, then apply legacy environment overrides."""
        config = cls.from_yaml(path)
        config.apply_legacy_env()
        return config

    def apply_legacy_env(self) -> None:
        """Honour the variable names the Node backend used."""
        host = os.getenv("OLLAMA_HOST", "").strip()
        if host:
            self.embedding.host = host

        model = (os.getenv("OLLAMA_EMBEDDING_MODEL") or os.getenv("EMBEDDING_MODEL") or "").strip()
        if model:
            self.embedding.model = model

        max_paragraphs = os.getenv("EMBEDDING_MAX_PARAGRAPHS_PER_MESSAGE", "").strip()
        if max_paragraphs:
            try:
                self.rebuild.max_paragraphs_per_message = int(max_paragraphs)
            except ValueError:
                pass

    def save(self, path: Path | str | None = None) -> None:
        """Save configuration to YAML file."""
        config_path = Path(path) if path else DEFAULT_CONFIG_PATH

        config_path.parent.mkdir(parents=True, exist_ok=True)

        data = self.model_dump(exclude_none=True)

        with open(config_path, "w") as f:
            yaml.dump(data, f, default_flow_style=False, sort_keys=False)

    def resolved_db_path(self) -> Path:
        """Resolve the SQLite database path."""
        return Path(self.storage.path).expanduser()


# Global config instance
_config: Config | None = None


def get_config() -> Config:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = Config.load()
    return _config


def set_config(config: Config) -> None:
    """Set the global configuration instance."""
    global _config
    _config = config
