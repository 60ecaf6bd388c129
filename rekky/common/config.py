"""
Configuration Management for Rekky

Loads configuration from ~/.rekky/config.json and environment variables.
"""

import os
import json
import logging
from pathlib import Path
from dataclasses import dataclass, field

from dotenv import load_dotenv

logger = logging.getLogger("rekky.common.config")

# Default config paths
CONFIG_DIR = Path.home() / ".rekky"
CONFIG_PATH = CONFIG_DIR / "config.json"


@dataclass
class EmbeddingConfig:
    """Text-embedding service configuration"""
    api_key: str = ""
    model: str = "text-embedding-ada-002"
    dimensions: int = 1536
    timeout: float = 30.0


@dataclass
class LLMConfig:
    """Summary LLM provider configuration"""
    provider: str = "groq"
    groq_api_key: str = ""
    groq_model: str = "llama-3.3-70b-versatile"
    openai_api_key: str = ""
    openai_model: str = "gpt-4o-mini"
    anthropic_api_key: str = ""
    anthropic_model: str = "claude-sonnet-4-20250514"
    temperature: float = 0.2
    max_tokens: int = 700
    timeout: float = 20.0


@dataclass
class QueueConfig:
    """Embedding task queue configuration"""
    max_concurrent: int = 3
    retry_delay: float = 5.0  # seconds
    max_retries: int = 3
    batch_size: int = 5
    poll_interval: float = 1.0  # upper bound between scheduler iterations


@dataclass
class SearchConfig:
    """Semantic search configuration"""
    threshold: float = 0.7
    limit: int = 10
    max_results_for_summary: int = 10
    summary_enabled: bool = True
    relevance_threshold: float = 0.65


@dataclass
class CacheConfig:
    """Process-lifetime cache configuration"""
    embedding_ttl: float = 60.0
    summary_ttl: float = 600.0
    max_entries: int = 100


@dataclass
class DatabaseConfig:
    """PostgreSQL (pgvector) connection"""
    url: str = ""


@dataclass
class RekkyConfig:
    """Main Rekky configuration"""
    embedding: EmbeddingConfig = field(default_factory=EmbeddingConfig)
    llm: LLMConfig = field(default_factory=LLMConfig)
    queue: QueueConfig = field(default_factory=QueueConfig)
    search: SearchConfig = field(default_factory=SearchConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    _env_sourced_keys: set = field(default_factory=set, repr=False)


def _parse_embedding_config(data: dict) -> EmbeddingConfig:
    """Parse embedding section from config dict"""
    embedding_data = data.get("embedding", {})
    return EmbeddingConfig(
        api_key=embedding_data.get("api_key", ""),
        model=embedding_data.get("model", "text-embedding-ada-002"),
        dimensions=embedding_data.get("dimensions", 1536),
        timeout=embedding_data.get("timeout", 30.0),
    )


def _parse_llm_config(data: dict) -> LLMConfig:
    """Parse llm section from config dict"""
    llm_data = data.get("llm", {})
    return LLMConfig(
        provider=llm_data.get("provider", "groq"),
        groq_api_key=llm_data.get("groq_api_key", ""),
        groq_model=llm_data.get("groq_model", "llama-3.3-70b-versatile"),
        openai_api_key=llm_data.get("openai_api_key", ""),
        openai_model=llm_data.get("openai_model", "gpt-4o-mini"),
        anthropic_api_key=llm_data.get("anthropic_api_key", ""),
        anthropic_model=llm_data.get("anthropic_model", "claude-sonnet-4-20250514"),
        temperature=llm_data.get("temperature", 0.2),
        max_tokens=llm_data.get("max_tokens", 700),
        timeout=llm_data.get("timeout", 20.0),
    )


def _parse_queue_config(data: dict) -> QueueConfig:
    """Parse queue section from config dict"""
    queue_data = data.get("queue", {})
    return QueueConfig(
        max_concurrent=queue_data.get("max_concurrent", 3),
        retry_delay=queue_data.get("retry_delay", 5.0),
        max_retries=queue_data.get("max_retries", 3),
        batch_size=queue_data.get("batch_size", 5),
        poll_interval=queue_data.get("poll_interval", 1.0),
    )


def _parse_search_config(data: dict) -> SearchConfig:
    """Parse search section from config dict"""
    search_data = data.get("search", {})
    return SearchConfig(
        threshold=search_data.get("threshold", 0.7),
        limit=search_data.get("limit", 10),
        max_results_for_summary=search_data.get("max_results_for_summary", 10),
        summary_enabled=search_data.get("summary_enabled", True),
        relevance_threshold=search_data.get("relevance_threshold", 0.65),
    )


def _parse_cache_config(data: dict) -> CacheConfig:
    """Parse cache section from config dict"""
    cache_data = data.get("cache", {})
    return CacheConfig(
        embedding_ttl=cache_data.get("embedding_ttl", 60.0),
        summary_ttl=cache_data.get("summary_ttl", 600.0),
        max_entries=cache_data.get("max_entries", 100),
    )


def load_config() -> RekkyConfig:
    """
    Load configuration from file and environment variables.

    Priority (highest to lowest):
    1. Environment variables (including a local .env file)
    2. Config file (~/.rekky/config.json)
    3. Default values
    """
    load_dotenv()
    config = RekkyConfig()

    # Load from config file if exists
    if CONFIG_PATH.exists():
        try:
            with open(CONFIG_PATH) as f:
                data = json.load(f)

            config.embedding = _parse_embedding_config(data)
            config.llm = _parse_llm_config(data)
            config.queue = _parse_queue_config(data)
            config.search = _parse_search_config(data)
            config.cache = _parse_cache_config(data)
            config.database = DatabaseConfig(url=data.get("database", {}).get("url", ""))
        except (json.JSONDecodeError, IOError) as e:
            logger.warning("Failed to load config file: %s", e)

    # The embedding service and the openai summary provider share one key
    if os.getenv("OPENAI_API_KEY"):
        config.embedding.api_key = os.getenv("OPENAI_API_KEY")
        config._env_sourced_keys.add("embedding.api_key")
    if os.getenv("EMBEDDING_MODEL"):
        config.embedding.model = os.getenv("EMBEDDING_MODEL")

    if os.getenv("EMBEDDING_QUEUE_MAX_CONCURRENT"):
        config.queue.max_concurrent = int(os.getenv("EMBEDDING_QUEUE_MAX_CONCURRENT"))
    if os.getenv("EMBEDDING_QUEUE_MAX_RETRIES"):
        config.queue.max_retries = int(os.getenv("EMBEDDING_QUEUE_MAX_RETRIES"))
    if os.getenv("EMBEDDING_QUEUE_RETRY_DELAY"):
        config.queue.retry_delay = float(os.getenv("EMBEDDING_QUEUE_RETRY_DELAY"))

    if os.getenv("SEARCH_THRESHOLD"):
        config.search.threshold = float(os.getenv("SEARCH_THRESHOLD"))
    if os.getenv("SEARCH_LIMIT"):
        config.search.limit = int(os.getenv("SEARCH_LIMIT"))

    if os.getenv("DATABASE_URL"):
        config.database.url = os.getenv("DATABASE_URL")
        config._env_sourced_keys.add("database.url")

    # LLM env var overrides (track env-sourced keys)
    _env_llm_map = {
        "GROQ_API_KEY": "groq_api_key",
        "GROQ_MODEL": "groq_model",
        "OPENAI_API_KEY": "openai_api_key",
        "OPENAI_MODEL": "openai_model",
        "ANTHROPIC_API_KEY": "anthropic_api_key",
        "ANTHROPIC_MODEL": "anthropic_model",
        "REKKY_LLM_PROVIDER": "provider",
    }
    for env_var, attr in _env_llm_map.items():
        val = os.getenv(env_var)
        if val:
            setattr(config.llm, attr, val)
            config._env_sourced_keys.add(attr)

    return config


def save_config(config: RekkyConfig) -> None:
    """Save configuration to file.

    API key fields that were sourced from environment variables are written
    as empty strings so that secrets are not persisted to disk.
    """
    CONFIG_DIR.mkdir(parents=True, exist_ok=True)

    env_sourced = getattr(config, "_env_sourced_keys", set())

    _llm_api_key_fields = {"groq_api_key", "openai_api_key", "anthropic_api_key"}
    llm_section = {
        "provider": config.llm.provider,
        "groq_api_key": config.llm.groq_api_key,
        "groq_model": config.llm.groq_model,
        "openai_api_key": config.llm.openai_api_key,
        "openai_model": config.llm.openai_model,
        "anthropic_api_key": config.llm.anthropic_api_key,
        "anthropic_model": config.llm.anthropic_model,
        "temperature": config.llm.temperature,
        "max_tokens": config.llm.max_tokens,
        "timeout": config.llm.timeout,
    }
    for key in _llm_api_key_fields:
        if key in env_sourced:
            llm_section[key] = ""

    data = {
        "embedding": {
            "api_key": "" if "embedding.api_key" in env_sourced else config.embedding.api_key,
            "model": config.embedding.model,
            "dimensions": config.embedding.dimensions,
            "timeout": config.embedding.timeout,
        },
        "llm": llm_section,
        "queue": {
            "max_concurrent": config.queue.max_concurrent,
            "retry_delay": config.queue.retry_delay,
            "max_retries": config.queue.max_retries,
            "batch_size": config.queue.batch_size,
            "poll_interval": config.queue.poll_interval,
        },
        "search": {
            "threshold": config.search.threshold,
            "limit": config.search.limit,
            "max_results_for_summary": config.search.max_results_for_summary,
            "summary_enabled": config.search.summary_enabled,
            "relevance_threshold": config.search.relevance_threshold,
        },
        "cache": {
            "embedding_ttl": config.cache.embedding_ttl,
            "summary_ttl": config.cache.summary_ttl,
            "max_entries": config.cache.max_entries,
        },
        "database": {
            "url": "" if "database.url" in env_sourced else config.database.url,
        },
    }

    with open(CONFIG_PATH, "w") as f:
        json.dump(data, f, indent=2)

    # Set secure permissions
    CONFIG_PATH.chmod(0o600)
