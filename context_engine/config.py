"""
Configuration
--------------
Settings are read from a YAML file and validated with pydantic.  Every field
has a default, so a missing file simply yields the defaults.

Resolution order for the YAML path:
    1. explicit path argument (CLI --config)
    2. CONTEXTENGINE_CONFIG environment variable
    3. config/config.yaml relative to the working directory

Environment overrides applied after the file is read:
    CONTEXTENGINE_CACHE_FILE   -> cache.file
    CONTEXTENGINE_LOG_LEVEL    -> logging.level
    CONTEXTENGINE_EMBEDDINGS   -> embedding.provider
"""
from __future__ import annotations

import os
from pathlib import Path
from typing import Literal, Optional

import yaml
from dotenv import load_dotenv
from loguru import logger
from pydantic import BaseModel, Field, model_validator

DEFAULT_CONFIG_PATH = Path("config/config.yaml")
DEFAULT_CACHE_FILE = "~/.contextengine/embedding-cache.json"


class ChunkingConfig(BaseModel):
    max_tokens: int = Field(400, ge=16)
    overlap_lines: int = Field(4, ge=0)
    encoding: str = "cl100k_base"


class RankingConfig(BaseModel):
    k1: float = Field(1.2, gt=0)
    heading_boost: float = Field(2.0, ge=0)
    multi_term_bonus: float = Field(0.5, ge=0)
    half_life_days: float = 90.0


class RetrievalConfig(BaseModel):
    top_k: int = Field(5, ge=1)
    keyword_weight: float = Field(0.4, ge=0, le=1)
    semantic_weight: float = Field(0.6, ge=0, le=1)
    background_embedding: bool = True

    @model_validator(mode="after")
    def _weights_sum_to_one(self) -> "RetrievalConfig":
        total = self.keyword_weight + self.semantic_weight
        if abs(total - 1.0) > 1e-6:
            raise ValueError(
                f"keyword_weight + semantic_weight must equal 1.0 (got {total:.4f})"
            )
        return self


class EmbeddingConfig(BaseModel):
    provider: Literal["openai", "local", "none"] = "openai"
    model: Optional[str] = None          # None = provider default
    dimensions: int = Field(384, ge=1)
    batch_size: int = Field(32, ge=1)
    max_chars: int = Field(512, ge=1)


class CacheConfig(BaseModel):
    file: str = DEFAULT_CACHE_FILE


class LoggingConfig(BaseModel):
    level: str = "INFO"
    file: Optional[str] = None


class Settings(BaseModel):
    chunking: ChunkingConfig = Field(default_factory=ChunkingConfig)
    ranking: RankingConfig = Field(default_factory=RankingConfig)
    retrieval: RetrievalConfig = Field(default_factory=RetrievalConfig)
    embedding: EmbeddingConfig = Field(default_factory=EmbeddingConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


def _read_yaml(path: Path) -> dict:
    with open(path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f)
    return data or {}


def _resolve_path(path: Optional[str | Path]) -> Optional[Path]:
    if path:
        return Path(path).expanduser()
    env_path = os.getenv("CONTEXTENGINE_CONFIG")
    if env_path:
        return Path(env_path).expanduser()
    if DEFAULT_CONFIG_PATH.exists():
        return DEFAULT_CONFIG_PATH
    return None


def load_settings(path: Optional[str | Path] = None) -> Settings:
    """
    Load and validate settings.

    An explicitly requested file that does not exist is an error; the
    implicit default location is optional.
    """
    load_dotenv()
    config_path = _resolve_path(path)

    raw: dict = {}
    if config_path is not None:
        if not config_path.exists():
            raise FileNotFoundError(f"Config file not found: {config_path}")
        raw = _read_yaml(config_path)
        if not isinstance(raw, dict):
            raise ValueError(f"Config file {config_path} must contain a mapping at the top level")
        logger.debug(f"[Config] Loaded {config_path}")

    overrides = {
        ("cache", "file"): os.getenv("CONTEXTENGINE_CACHE_FILE"),
        ("logging", "level"): os.getenv("CONTEXTENGINE_LOG_LEVEL"),
        ("embedding", "provider"): os.getenv("CONTEXTENGINE_EMBEDDINGS"),
    }
    for (section, key), value in overrides.items():
        if not value:
            continue
        current = raw.get(section)
        if current is None:
            raw[section] = {key: value}
        elif isinstance(current, dict):
            raw[section] = {**current, key: value}
        # any other type is left for pydantic to reject

    return Settings.model_validate(raw)
