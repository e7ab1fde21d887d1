"""
Generation backend for built-in tools.

``LLMGenerator`` bundles the three capabilities agents reach through the
tool registry: free text, schema-validated structured output, and
embeddings. Text and structured calls go through mirascope (or a local
Ollama server when the provider is ``ollama``); embeddings always come from
Ollama.

Typical wiring::

    generator = LLMGenerator.from_config()
    tools = ToolRegistry()
    register_builtin_tools(tools, generator.providers(get_world_state=world.snapshot))
"""

from __future__ import annotations

from typing import Any, Callable, List, Optional, Type

from pydantic import BaseModel

from .config import Config
from .llm_utils import call_llm_text, call_llm_with_retries
from .local_llm import call_ollama_embedding
from .tools import ToolProviders


class LLMGenerator:
    """Provider-agnostic text, structured, and embedding generation."""

    def __init__(
        self,
        *,
        provider: str,
        model: str,
        embedding_model: str = "nomic-embed-text",
        max_attempts: int = 3,
    ) -> None:
        self.provider = provider
        self.model = model
        self.embedding_model = embedding_model
        self.max_attempts = max_attempts

    @classmethod
    def from_config(cls) -> "LLMGenerator":
        Config.validate()
        return cls(
            provider=Config.LLM_PROVIDER,
            model=Config.LLM_MODEL,
            embedding_model=Config.EMBEDDING_MODEL,
        )

    async def generate_text(self, system: str, user: str, *, model: Optional[str] = None) -> str:
        return await call_llm_text(
            system_prompt=system,
            user_prompt=user,
            llm_provider=self.provider,
            llm_model=model or self.model,
        )

    async def generate_structured(
        self,
        system: str,
        user: str,
        schema: Type[BaseModel],
        *,
        model: Optional[str] = None,
    ) -> BaseModel:
        if not (isinstance(schema, type) and issubclass(schema, BaseModel)):
            raise TypeError("generate_structured requires a pydantic model class as schema")
        return await call_llm_with_retries(
            system_prompt=system,
            user_prompt=user,
            llm_provider=self.provider,
            llm_model=model or self.model,
            response_model=schema,
            max_attempts=self.max_attempts,
        )

    async def embed(self, text: str) -> List[float]:
        return await call_ollama_embedding(text=text, model=self.embedding_model)

    def providers(
        self,
        *,
        compose_prompt: Optional[Callable[..., Any]] = None,
        get_world_state: Optional[Callable[..., Any]] = None,
        navigate_world: Optional[Callable[..., Any]] = None,
        fire_event: Optional[Callable[..., Any]] = None,
        evaluate_performance: Optional[Callable[..., Any]] = None,
    ) -> ToolProviders:
        """Tool providers backed by this generator plus host world hooks."""
        return ToolProviders(
            generate_text=self.generate_text,
            generate_structured=self.generate_structured,
            embed_text=self.embed,
            compose_prompt=compose_prompt,
            get_world_state=get_world_state,
            navigate_world=navigate_world,
            fire_event=fire_event,
            evaluate_performance=evaluate_performance,
        )
