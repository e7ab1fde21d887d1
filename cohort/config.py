"""
Cohort Configuration

Loads configuration from environment variables with sensible defaults.
"""

import os
from dotenv import load_dotenv

# Load .env file if it exists
load_dotenv()


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


def _env_float(name: str) -> float | None:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return None
    return float(raw)


class Config:
    """Application configuration loaded from environment variables."""

    # LLM Provider Configuration
    LLM_PROVIDER: str = os.getenv("LLM_PROVIDER", "openai")
    LLM_MODEL: str = os.getenv("LLM_MODEL", "gpt-5-nano")

    # API Keys
    ANTHROPIC_API_KEY: str | None = os.getenv("ANTHROPIC_API_KEY")
    OPENAI_API_KEY: str | None = os.getenv("OPENAI_API_KEY")

    # Local Ollama server, used for embeddings and the "ollama" provider
    OLLAMA_BASE_URL: str | None = os.getenv("OLLAMA_BASE_URL")
    EMBEDDING_MODEL: str = os.getenv("EMBEDDING_MODEL", "nomic-embed-text")

    # Pool Configuration
    MAX_DECISIONS_PER_TICK: int = int(os.getenv("MAX_DECISIONS_PER_TICK", "20"))
    ENABLE_MESSAGING: bool = _env_flag("ENABLE_MESSAGING", "true")
    CONFLICT_STRATEGY: str = os.getenv("CONFLICT_STRATEGY", "priority")
    FAILURE_POLICY: str = os.getenv("FAILURE_POLICY", "isolate")
    # Unset means no limit on an agent's think phase
    THINK_TIMEOUT_SECONDS: float | None = _env_float("THINK_TIMEOUT_SECONDS")

    # Logging
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    @classmethod
    def validate(cls) -> None:
        """Validate configuration and raise errors if required values are missing."""
        if cls.MAX_DECISIONS_PER_TICK < 1:
            raise ValueError("MAX_DECISIONS_PER_TICK must be >= 1")

        if cls.CONFLICT_STRATEGY not in ("priority", "first-wins", "all-pass"):
            raise ValueError(
                f"CONFLICT_STRATEGY '{cls.CONFLICT_STRATEGY}' is not supported. "
                "Use one of: priority, first-wins, all-pass."
            )

        if cls.FAILURE_POLICY not in ("isolate", "fail_fast"):
            raise ValueError(
                f"FAILURE_POLICY '{cls.FAILURE_POLICY}' is not supported. "
                "Use one of: isolate, fail_fast."
            )

        if cls.THINK_TIMEOUT_SECONDS is not None and cls.THINK_TIMEOUT_SECONDS <= 0:
            raise ValueError("THINK_TIMEOUT_SECONDS must be positive when set")

        if cls.LLM_PROVIDER == "anthropic" and not cls.ANTHROPIC_API_KEY:
            raise ValueError(
                "ANTHROPIC_API_KEY is required when using the 'anthropic' provider"
            )

        if cls.LLM_PROVIDER == "openai" and not cls.OPENAI_API_KEY:
            raise ValueError(
                "OPENAI_API_KEY is required when using the 'openai' provider. "
                "For local models, set LLM_PROVIDER=ollama instead."
            )

    @classmethod
    def display(cls) -> str:
        """Return a formatted string showing current configuration."""
        timeout = (
            f"{cls.THINK_TIMEOUT_SECONDS}s" if cls.THINK_TIMEOUT_SECONDS else "none"
        )
        lines = [
            "Cohort Configuration:",
            f"  LLM Provider: {cls.LLM_PROVIDER}",
            f"  LLM Model: {cls.LLM_MODEL}",
            f"  Embedding Model: {cls.EMBEDDING_MODEL}",
            f"  Max Decisions/Tick: {cls.MAX_DECISIONS_PER_TICK}",
            f"  Messaging: {'on' if cls.ENABLE_MESSAGING else 'off'}",
            f"  Conflict Strategy: {cls.CONFLICT_STRATEGY}",
            f"  Failure Policy: {cls.FAILURE_POLICY}",
            f"  Think Timeout: {timeout}",
        ]
        return "\n".join(lines)
