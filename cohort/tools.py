"""
Capability-scoped tool registry.

Tools are the bridge between an agent's reasoning and the host's
capabilities (text generation, embeddings, world state access, scoring).
Each tool declares which roles may use it.

Key contract: ``ToolRegistry.execute`` never raises. Unknown tools and
handler exceptions both come back as failed ``Observation`` objects, so the
agent loop and orchestrator can always await tool calls safely. Role
behaviors must check ``observation.success`` explicitly.
"""

from __future__ import annotations

import inspect
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, FrozenSet, Iterable, List, Optional

from .logging_utils import log_deterministic, log_error
from .schemas import Observation, Role


ToolHandler = Callable[[Dict[str, Any]], Awaitable[Observation]]

ALL_ROLES: FrozenSet[Role] = frozenset(Role)


@dataclass
class Tool:
    """An invocable capability restricted to a set of agent roles.

    ``parameters`` is a loose schema (name -> type label or JSON schema
    fragment) used only when describing tools to an LLM.
    """

    name: str
    description: str
    available_to: Iterable[Role]
    handler: ToolHandler
    parameters: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.available_to = frozenset(Role(role) for role in self.available_to)

    def allows(self, role: Role) -> bool:
        return Role(role) in self.available_to


class ToolRegistry:
    """Name-keyed set of tools shared by every agent in a pool."""

    def __init__(self, tools: Optional[Iterable[Tool]] = None) -> None:
        self._tools: Dict[str, Tool] = {}
        for tool in tools or []:
            self.register(tool)

    def __len__(self) -> int:
        return len(self._tools)

    def __contains__(self, name: str) -> bool:
        return name in self._tools

    def register(self, tool: Tool) -> None:
        """Store a tool under its name, replacing any previous registration."""
        self._tools[tool.name] = tool

    def get_tool(self, name: str) -> Optional[Tool]:
        return self._tools.get(name)

    def get_tools_for_role(self, role: Role) -> List[Tool]:
        return [tool for tool in self._tools.values() if tool.allows(role)]

    async def execute(self, name: str, params: Optional[Dict[str, Any]] = None) -> Observation:
        """Invoke a tool by name. Always returns an Observation."""
        tool = self._tools.get(name)
        if tool is None:
            return Observation.failure(name, f"Tool '{name}' not found")

        log_deterministic(f"[Tools] Executing '{name}'")
        try:
            return await tool.handler(dict(params or {}))
        except Exception as exc:
            message = str(exc) or exc.__class__.__name__
            log_error(f"[Tools] '{name}' failed: {message}")
            return Observation.failure(name, message)

    def describe_tools(self, role: Role) -> str:
        """Render the tools available to ``role`` for prompt construction."""
        available = self.get_tools_for_role(role)
        if not available:
            return "No tools available."
        return "\n".join(f"- **{tool.name}**: {tool.description}" for tool in available)


# ============================================================================
# Built-in tools
# ============================================================================


@dataclass
class ToolProviders:
    """Host capabilities that become built-in tools.

    Every provider is optional; only supplied ones are registered. Providers
    may be plain functions or coroutine functions.
    """

    generate_text: Optional[Callable[[str, str], Any]] = None
    generate_structured: Optional[Callable[[str, str, Any], Any]] = None
    embed_text: Optional[Callable[[str], Any]] = None
    compose_prompt: Optional[Callable[[Dict[str, Any]], Any]] = None
    get_world_state: Optional[Callable[[], Any]] = None
    navigate_world: Optional[Callable[[str], Any]] = None
    fire_event: Optional[Callable[[str], Any]] = None
    evaluate_performance: Optional[Callable[[Dict[str, Any]], Any]] = None


async def _call_provider(fn: Callable[..., Any], *args: Any) -> Any:
    result = fn(*args)
    if inspect.isawaitable(result):
        result = await result
    return result


def _simple_tool(
    name: str,
    description: str,
    roles: Iterable[Role],
    parameters: Dict[str, Any],
    invoke: Callable[[Dict[str, Any]], Awaitable[Any]],
) -> Tool:
    """Wrap a provider call that returns raw data into a successful Observation."""

    async def handler(params: Dict[str, Any]) -> Observation:
        return Observation.ok(name, await invoke(params))

    return Tool(
        name=name,
        description=description,
        available_to=roles,
        handler=handler,
        parameters=parameters,
    )


def register_builtin_tools(registry: ToolRegistry, providers: ToolProviders) -> None:
    """Populate ``registry`` with the standard tools for the supplied providers."""

    if providers.generate_text is not None:
        gen_text = providers.generate_text
        registry.register(
            _simple_tool(
                "generate_text",
                "Generate a text response using the LLM. Use for NPC dialogue, analysis, or reasoning.",
                ALL_ROLES,
                {"system": "string", "user": "string"},
                lambda p: _call_provider(gen_text, str(p.get("system", "")), str(p.get("user", ""))),
            )
        )

    if providers.generate_structured is not None:
        gen_structured = providers.generate_structured
        registry.register(
            _simple_tool(
                "generate_structured",
                "Generate a structured response using the LLM. Use for decisions, classifications, and plans.",
                ALL_ROLES,
                {"system": "string", "user": "string", "schema": "pydantic model"},
                lambda p: _call_provider(
                    gen_structured, str(p.get("system", "")), str(p.get("user", "")), p.get("schema")
                ),
            )
        )

    if providers.embed_text is not None:
        embed = providers.embed_text
        registry.register(
            _simple_tool(
                "embed_text",
                "Generate a vector embedding for text. Use for memory storage and similarity search.",
                {Role.NPC, Role.TUTOR, Role.EVALUATION},
                {"text": "string"},
                lambda p: _call_provider(embed, str(p.get("text", ""))),
            )
        )

    if providers.compose_prompt is not None:
        compose = providers.compose_prompt
        registry.register(
            _simple_tool(
                "compose_prompt",
                "Compose a layered NPC prompt from the prompt registry.",
                {Role.NPC},
                {
                    "tier": "string",
                    "npc_config": "object",
                    "schema": "object",
                    "session_context": "object",
                    "real_time_state": "object",
                },
                lambda p: _call_provider(compose, p),
            )
        )

    if providers.get_world_state is not None:
        get_state = providers.get_world_state
        registry.register(
            _simple_tool(
                "get_world_state",
                "Read the current world state including NPC locations, time of day, and active events.",
                ALL_ROLES,
                {},
                lambda p: _call_provider(get_state),
            )
        )

    if providers.navigate_world is not None:
        navigate = providers.navigate_world

        async def navigate_handler(params: Dict[str, Any]) -> Observation:
            result = await _call_provider(navigate, str(params.get("location_id", "")))
            if result is None:
                return Observation.failure(
                    "navigate_world",
                    "Navigation failed: location not connected or inaccessible",
                )
            return Observation.ok("navigate_world", result)

        registry.register(
            Tool(
                name="navigate_world",
                description="Move the learner to a connected location in the world.",
                available_to={Role.WORLD},
                handler=navigate_handler,
                parameters={"location_id": "string"},
            )
        )

    if providers.fire_event is not None:
        fire = providers.fire_event
        registry.register(
            _simple_tool(
                "fire_event",
                "Trigger an ambient event in the world (festival, emergency, weather change, etc.).",
                {Role.WORLD},
                {"event_id": "string"},
                lambda p: _call_provider(fire, str(p.get("event_id", ""))),
            )
        )

    if providers.evaluate_performance is not None:
        evaluate = providers.evaluate_performance
        registry.register(
            _simple_tool(
                "evaluate_performance",
                "Compute CEFR scores and competency metrics for the learner.",
                {Role.EVALUATION, Role.TUTOR},
                {"session_data": "object"},
                lambda p: _call_provider(evaluate, p),
            )
        )
