"""Tests for the LLM-backed tool providers."""

import pytest
from pydantic import BaseModel

from cohort.config import Config
from cohort.generation import LLMGenerator
from cohort.schemas import Role
from cohort.tools import ToolRegistry, register_builtin_tools


class Greeting(BaseModel):
    text: str
    formal: bool


@pytest.mark.asyncio
async def test_generate_text_forwards_provider_and_model(monkeypatch):
    captured = {}

    async def fake_text(**kwargs):
        captured.update(kwargs)
        return "Buenos días"

    monkeypatch.setattr("cohort.generation.call_llm_text", fake_text)
    generator = LLMGenerator(provider="anthropic", model="claude-haiku")

    assert await generator.generate_text("sys", "user") == "Buenos días"
    assert captured == {
        "system_prompt": "sys",
        "user_prompt": "user",
        "llm_provider": "anthropic",
        "llm_model": "claude-haiku",
    }

    await generator.generate_text("sys", "user", model="claude-sonnet")
    assert captured["llm_model"] == "claude-sonnet"


@pytest.mark.asyncio
async def test_generate_structured_uses_retry_helper(monkeypatch):
    captured = {}

    async def fake_retries(**kwargs):
        captured.update(kwargs)
        return Greeting(text="Hola", formal=False)

    monkeypatch.setattr("cohort.generation.call_llm_with_retries", fake_retries)
    generator = LLMGenerator(provider="openai", model="gpt-5-nano", max_attempts=4)

    result = await generator.generate_structured("sys", "user", Greeting)

    assert result == Greeting(text="Hola", formal=False)
    assert captured["response_model"] is Greeting
    assert captured["max_attempts"] == 4


@pytest.mark.asyncio
async def test_generate_structured_rejects_non_models():
    generator = LLMGenerator(provider="openai", model="gpt-5-nano")
    with pytest.raises(TypeError):
        await generator.generate_structured("sys", "user", {"type": "object"})


@pytest.mark.asyncio
async def test_embed_uses_embedding_model(monkeypatch):
    captured = {}

    async def fake_embedding(*, text, model):
        captured.update(text=text, model=model)
        return [0.1, 0.2]

    monkeypatch.setattr("cohort.generation.call_ollama_embedding", fake_embedding)
    generator = LLMGenerator(provider="ollama", model="llama3.1", embedding_model="mxbai-embed-large")

    assert await generator.embed("pescado") == [0.1, 0.2]
    assert captured == {"text": "pescado", "model": "mxbai-embed-large"}


@pytest.mark.asyncio
async def test_providers_wire_into_registry(monkeypatch):
    async def fake_text(**kwargs):
        return f"reply to {kwargs['user_prompt']}"

    monkeypatch.setattr("cohort.generation.call_llm_text", fake_text)
    generator = LLMGenerator(provider="openai", model="gpt-5-nano")

    registry = ToolRegistry()
    register_builtin_tools(registry, generator.providers(get_world_state=lambda: {"hour": 9}))

    npc_tools = {t.name for t in registry.get_tools_for_role(Role.NPC)}
    assert npc_tools == {"generate_text", "generate_structured", "embed_text", "get_world_state"}
    assert registry.get_tool("fire_event") is None

    observation = await registry.execute("generate_text", {"system": "s", "user": "hola"})
    assert observation.success
    assert observation.data == "reply to hola"


def test_from_config_reads_settings(monkeypatch):
    monkeypatch.setattr(Config, "LLM_PROVIDER", "ollama")
    monkeypatch.setattr(Config, "LLM_MODEL", "llama3.1")
    monkeypatch.setattr(Config, "EMBEDDING_MODEL", "nomic-embed-text")
    monkeypatch.setattr(Config, "THINK_TIMEOUT_SECONDS", None)

    generator = LLMGenerator.from_config()

    assert (generator.provider, generator.model, generator.embedding_model) == (
        "ollama",
        "llama3.1",
        "nomic-embed-text",
    )


def test_from_config_requires_api_key(monkeypatch):
    monkeypatch.setattr(Config, "LLM_PROVIDER", "openai")
    monkeypatch.setattr(Config, "OPENAI_API_KEY", None)
    with pytest.raises(ValueError, match="OPENAI_API_KEY"):
        LLMGenerator.from_config()
