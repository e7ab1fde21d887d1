"""LLM call helpers: free text and schema-validated output with retries."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Callable, Sequence, TypeVar

from mirascope import llm
from pydantic import BaseModel, ValidationError
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt

from cohort.local_llm import LocalLLMError, call_ollama_chat
from cohort.logging_utils import log_error, log_llm


ModelT = TypeVar("ModelT", bound=BaseModel)
LLM_TIMEOUT_SECONDS = 120.0


@dataclass(slots=True)
class ValidationFeedback:
    """Correction text for the model plus the issue list for logs."""

    llm_text: str
    issues: Sequence[str]


def _preview(value: Any, *, limit: int = 80) -> str:
    if value is None:
        return "null"
    text = repr(value)
    if len(text) > limit:
        return text[: limit - 3] + "..."
    return text


def inject_validation_feedback(error: ValidationError) -> ValidationFeedback:
    """Turn a pydantic ValidationError into a correction prompt.

    Each issue reads ``path: message [type=...] | received=...`` so the model
    can see exactly which field to fix on the next attempt.
    """
    issues: list[str] = []
    for err in error.errors(include_url=False):
        path = ".".join(str(part) for part in err.get("loc", [])) or "root"
        line = f"{path}: {err.get('msg', 'validation error')}"
        if err.get("type"):
            line += f" [type={err['type']}]"
        if "input" in err:
            line += f" | received={_preview(err.get('input'))}"
        issues.append(line)

    if not issues:
        issues.append("root: response did not match the expected schema")

    text = [
        "Your previous JSON response did not validate against the required schema.",
        "Reply again with only corrected JSON, no code fences or commentary.",
        "Problems found:",
    ]
    text.extend(f"- {issue}" for issue in issues)
    return ValidationFeedback(llm_text="\n".join(text), issues=issues)


def _join_sections(*sections: str) -> str:
    return "\n\n".join(section for section in sections if section)


def _is_local(provider: str) -> bool:
    return provider.lower() == "ollama"


async def call_llm_text(
    *,
    system_prompt: str,
    user_prompt: str,
    llm_provider: str,
    llm_model: str,
) -> str:
    """Single free-text completion. No retries; errors propagate."""
    system_prompt = system_prompt.strip()
    user_prompt = user_prompt.strip()
    log_llm(f"[LLM] text via {llm_provider}/{llm_model}")

    if _is_local(llm_provider):
        try:
            return await asyncio.wait_for(
                call_ollama_chat(
                    system_prompt=system_prompt,
                    user_prompt=user_prompt,
                    llm_model=llm_model,
                ),
                timeout=LLM_TIMEOUT_SECONDS,
            )
        except LocalLLMError as exc:
            raise RuntimeError(f"Local LLM provider error ({llm_provider}): {exc}") from exc

    @llm.call(provider=llm_provider, model=llm_model)
    async def _complete(prompt: str) -> str:
        return prompt

    response = await asyncio.wait_for(
        _complete(_join_sections(system_prompt, user_prompt)),
        timeout=LLM_TIMEOUT_SECONDS,
    )
    return response.content


async def call_llm_with_retries(
    *,
    system_prompt: str,
    user_prompt: str,
    llm_provider: str,
    llm_model: str,
    response_model: type[ModelT],
    max_attempts: int = 3,
    feedback_builder: Callable[[ValidationError], ValidationFeedback] = inject_validation_feedback,
) -> ModelT:
    """Structured call that retries on schema validation failures.

    Only ``ValidationError`` is retried. Each retry appends the validation
    feedback to the original user prompt. Timeouts and local server errors
    propagate immediately.
    """
    system_prompt = system_prompt.strip()
    base_user_prompt = user_prompt.strip()
    feedback: ValidationFeedback | None = None
    local = _is_local(llm_provider)

    remote_invoke: Callable[[str], Any] | None = None
    if not local:
        @llm.call(provider=llm_provider, model=llm_model, response_model=response_model)
        async def _invoke(prompt: str) -> str:
            return prompt

        remote_invoke = _invoke

    attempt_number = 0
    async for attempt in AsyncRetrying(
        retry=retry_if_exception_type(ValidationError),
        stop=stop_after_attempt(max_attempts),
        reraise=True,
    ):
        with attempt:
            attempt_number += 1
            if attempt_number > 1:
                log_llm(
                    f"[LLM] retry {attempt_number}/{max_attempts} for {response_model.__name__}"
                )
            user_section = _join_sections(
                base_user_prompt, feedback.llm_text if feedback is not None else ""
            )

            try:
                if local:
                    raw = await asyncio.wait_for(
                        call_ollama_chat(
                            system_prompt=system_prompt,
                            user_prompt=user_section,
                            llm_model=llm_model,
                        ),
                        timeout=LLM_TIMEOUT_SECONDS,
                    )
                    return response_model.model_validate_json(raw)

                if remote_invoke is None:
                    raise RuntimeError("Remote LLM invoke is not initialized.")
                return await asyncio.wait_for(
                    remote_invoke(_join_sections(system_prompt, user_section)),
                    timeout=LLM_TIMEOUT_SECONDS,
                )
            except ValidationError as exc:
                feedback = feedback_builder(exc)
                log_error(
                    f"[LLM] {response_model.__name__} failed validation "
                    f"(attempt {attempt_number}/{max_attempts})"
                )
                for issue in feedback.issues:
                    log_error(f"    {issue}")
                raise
            except asyncio.TimeoutError:
                log_error(
                    f"[LLM] {response_model.__name__} timed out after {int(LLM_TIMEOUT_SECONDS)}s"
                )
                raise
            except LocalLLMError as exc:
                raise RuntimeError(f"Local LLM provider error ({llm_provider}): {exc}") from exc

    raise RuntimeError("LLM retry loop exited without a result")
