import pytest

from cohort.local_llm import LocalLLMError, call_ollama_chat, call_ollama_embedding


@pytest.mark.asyncio
async def test_call_ollama_chat_builds_payload(monkeypatch):
    captured: dict[str, object] = {}

    def fake_request(endpoint, payload, base_url, timeout):
        captured["endpoint"] = endpoint
        captured["payload"] = payload
        captured["base_url"] = base_url
        captured["timeout"] = timeout
        return {"message": {"role": "assistant", "content": "¡Hola!"}}

    monkeypatch.setattr("cohort.local_llm._perform_ollama_request", fake_request)

    result = await call_ollama_chat(
        system_prompt="System context",
        user_prompt="User payload",
        llm_model="llama3.1",
        base_url="http://localhost:11434/",
        timeout=30,
    )

    assert result == "¡Hola!"
    assert captured["endpoint"] == "/api/chat"
    payload = captured["payload"]
    assert payload["model"] == "llama3.1"
    assert payload["stream"] is False
    assert payload["messages"][0] == {"role": "system", "content": "System context"}
    assert payload["messages"][1] == {"role": "user", "content": "User payload"}
    assert captured["base_url"] == "http://localhost:11434"
    assert captured["timeout"] == 30


@pytest.mark.asyncio
async def test_call_ollama_chat_skips_empty_system_prompt(monkeypatch):
    captured: dict[str, object] = {}

    def fake_request(endpoint, payload, base_url, timeout):
        captured["payload"] = payload
        return {"message": {"content": "ok"}}

    monkeypatch.setattr("cohort.local_llm._perform_ollama_request", fake_request)

    await call_ollama_chat(system_prompt="   ", user_prompt="Hola", llm_model="llama3.1")
    assert captured["payload"]["messages"] == [{"role": "user", "content": "Hola"}]


@pytest.mark.asyncio
async def test_call_ollama_chat_rejects_empty_prompt_and_reply(monkeypatch):
    with pytest.raises(LocalLLMError):
        await call_ollama_chat(system_prompt="s", user_prompt="  ", llm_model="llama3.1")

    monkeypatch.setattr(
        "cohort.local_llm._perform_ollama_request",
        lambda endpoint, payload, base_url, timeout: {"message": {}},
    )
    with pytest.raises(LocalLLMError):
        await call_ollama_chat(system_prompt="s", user_prompt="Hola", llm_model="llama3.1")


@pytest.mark.asyncio
async def test_call_ollama_embedding(monkeypatch):
    captured: dict[str, object] = {}

    def fake_request(endpoint, payload, base_url, timeout):
        captured["endpoint"] = endpoint
        captured["payload"] = payload
        captured["base_url"] = base_url
        return {"embedding": [1, 0.5, -2]}

    monkeypatch.setenv("OLLAMA_BASE_URL", "http://ollama.internal:11434")
    monkeypatch.setattr("cohort.local_llm._perform_ollama_request", fake_request)

    vector = await call_ollama_embedding(text="pescado fresco", model="nomic-embed-text")

    assert vector == [1.0, 0.5, -2.0]
    assert captured["endpoint"] == "/api/embeddings"
    assert captured["payload"] == {"model": "nomic-embed-text", "prompt": "pescado fresco"}
    assert captured["base_url"] == "http://ollama.internal:11434"


@pytest.mark.asyncio
async def test_call_ollama_embedding_requires_vector(monkeypatch):
    monkeypatch.setattr(
        "cohort.local_llm._perform_ollama_request",
        lambda endpoint, payload, base_url, timeout: {"embedding": []},
    )
    with pytest.raises(LocalLLMError):
        await call_ollama_embedding(text="x", model="nomic-embed-text")
