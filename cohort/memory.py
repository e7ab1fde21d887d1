"""
Tiered memory for pool agents.

Each agent owns one ``TieredMemory`` instance with three independently
managed tiers:

- Working memory: bounded recency buffer of "what just happened".
  Strict FIFO eviction, no importance weighting.
- Episodic memory: capacity-bounded store of past interactions, queryable
  by similarity (vector mode) or substring (keyword mode). Eviction removes
  the entry with the lowest ``importance * (1 + access_count * 0.1)``.
- Semantic memory: deduplicating fact store keyed on (category, content).
  Never evicted by capacity.

Recall is pluggable: ``RecallStrategy`` has two implementations selected
at construction time. ``VectorRecall`` needs both an embedding function and
a vector store; ``SubstringRecall`` works on the local copy alone. Both bump
``access_count`` on local hits, so eviction protection behaves the same in
either mode.

Failure semantics: local state first. Errors from the embedder or vector
store are logged and never roll back the local mutation; the local copy is
authoritative.
"""

from __future__ import annotations

import math
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from itertools import count
from typing import Any, Awaitable, Callable, Deque, Dict, Iterable, List, Optional, Protocol

from .logging_utils import log_deterministic, log_error
from .schemas import (
    EpisodicMemory,
    FactCategory,
    MemoryItem,
    MemorySnapshot,
    SemanticFact,
    utcnow,
)


EmbedFunction = Callable[[str], Awaitable[List[float]]]
"""Async callable turning text into a fixed-length vector."""


@dataclass
class MemoryConfig:
    """Capacity and recall settings for one agent's memory."""

    # Max items in the working memory buffer
    working_memory_size: int = 20
    # Max episodic memories retained
    episodic_capacity: int = 100
    # Minimum similarity score for vector recall (0.0-1.0)
    recall_threshold: float = 0.5
    # When False, learn() is a no-op
    enable_semantic: bool = True


# ============================================================================
# Vector store capability
# ============================================================================


@dataclass
class VectorMatch:
    """One ranked result from a vector store query."""

    id: str
    score: float
    metadata: Dict[str, Any] = field(default_factory=dict)


class VectorStore(Protocol):
    """Minimal vector store interface consumed by episodic memory."""

    async def upsert(self, id: str, vector: List[float], metadata: Dict[str, Any]) -> None:
        ...

    async def query(
        self,
        vector: List[float],
        top_k: int,
        filter: Optional[Dict[str, Any]] = None,
    ) -> List[VectorMatch]:
        ...

    async def delete(self, ids: List[str]) -> None:
        ...


def cosine_similarity(vec1: List[float], vec2: List[float]) -> float:
    """Calculate cosine similarity, 0.0 for empty or mismatched vectors."""
    if not vec1 or not vec2 or len(vec1) != len(vec2):
        return 0.0

    dot_product = sum(a * b for a, b in zip(vec1, vec2))
    norm1 = sum(a * a for a in vec1) ** 0.5
    norm2 = sum(b * b for b in vec2) ** 0.5

    if norm1 * norm2 == 0:
        return 0.0

    return dot_product / (norm1 * norm2)


class InMemoryVectorStore:
    """Process-local vector store ranking by cosine similarity.

    Good for tests and single-process sessions. ``filter`` keeps only entries
    whose metadata matches every given key/value pair.
    """

    def __init__(self) -> None:
        self.vectors: Dict[str, List[float]] = {}
        self.metadata: Dict[str, Dict[str, Any]] = {}

    async def upsert(self, id: str, vector: List[float], metadata: Dict[str, Any]) -> None:
        self.vectors[id] = list(vector)
        self.metadata[id] = dict(metadata)

    async def query(
        self,
        vector: List[float],
        top_k: int,
        filter: Optional[Dict[str, Any]] = None,
    ) -> List[VectorMatch]:
        matches: List[VectorMatch] = []
        for vid, stored in self.vectors.items():
            meta = self.metadata.get(vid, {})
            if filter and any(meta.get(k) != v for k, v in filter.items()):
                continue
            matches.append(VectorMatch(id=vid, score=cosine_similarity(vector, stored), metadata=dict(meta)))
        matches.sort(key=lambda m: m.score, reverse=True)
        return matches[:top_k]

    async def delete(self, ids: List[str]) -> None:
        for vid in ids:
            self.vectors.pop(vid, None)
            self.metadata.pop(vid, None)


# ============================================================================
# Recall strategies
# ============================================================================


class RecallStrategy(ABC):
    """How episodic memories are indexed, discarded, and recalled.

    ``episodes`` passed to ``recall`` is the memory's local store, keyed by
    id in insertion order. Implementations bump ``access_count`` on every
    local entry they return.
    """

    async def index(self, episode: EpisodicMemory, owner_id: Optional[str]) -> None:
        """Called after an episode is stored locally."""

    async def discard(self, ids: List[str]) -> None:
        """Called after episodes are removed locally."""

    @abstractmethod
    async def recall(
        self,
        episodes: Dict[str, EpisodicMemory],
        query: str,
        top_k: int,
        *,
        owner_id: Optional[str] = None,
    ) -> List[EpisodicMemory]:
        ...


class SubstringRecall(RecallStrategy):
    """Case-insensitive substring match over local episodes, newest first."""

    async def recall(
        self,
        episodes: Dict[str, EpisodicMemory],
        query: str,
        top_k: int,
        *,
        owner_id: Optional[str] = None,
    ) -> List[EpisodicMemory]:
        needle = query.lower()
        matches = [ep for ep in episodes.values() if needle in ep.content.lower()]
        # sorted() is stable: equal timestamps keep insertion order
        matches = sorted(matches, key=lambda ep: ep.timestamp, reverse=True)[:top_k]
        for ep in matches:
            ep.access_count += 1
        return matches


class VectorRecall(RecallStrategy):
    """Similarity recall through an embedding function and a vector store.

    Results below ``threshold`` are dropped. Hits present locally get their
    access count bumped; hits that only exist remotely are rebuilt from the
    stored metadata. If the embedder or store fails during recall the query
    falls back to substring matching over the local copy.
    """

    def __init__(self, store: VectorStore, embed: EmbedFunction, *, threshold: float = 0.5) -> None:
        self.store = store
        self.embed = embed
        self.threshold = threshold
        self._fallback = SubstringRecall()

    async def index(self, episode: EpisodicMemory, owner_id: Optional[str]) -> None:
        try:
            episode.embedding = await self.embed(episode.content)
            await self.store.upsert(episode.id, episode.embedding, _vector_metadata(episode, owner_id))
        except Exception as exc:
            log_error(f"[Memory] Could not index episode {episode.id}: {exc}")

    async def discard(self, ids: List[str]) -> None:
        if not ids:
            return
        try:
            await self.store.delete(ids)
        except Exception as exc:
            log_error(f"[Memory] Vector store delete failed for {ids}: {exc}")

    async def recall(
        self,
        episodes: Dict[str, EpisodicMemory],
        query: str,
        top_k: int,
        *,
        owner_id: Optional[str] = None,
    ) -> List[EpisodicMemory]:
        try:
            vector = await self.embed(query)
            matches = await self.store.query(
                vector, top_k, {"agent_id": owner_id} if owner_id else None
            )
        except Exception as exc:
            log_error(f"[Memory] Vector recall failed, using keyword fallback: {exc}")
            return await self._fallback.recall(episodes, query, top_k)

        results: List[EpisodicMemory] = []
        for match in matches:
            if match.score < self.threshold:
                continue
            local = episodes.get(match.id)
            if local is not None:
                local.access_count += 1
                results.append(local)
            else:
                results.append(_episode_from_metadata(match))
        return results


def _vector_metadata(episode: EpisodicMemory, owner_id: Optional[str]) -> Dict[str, Any]:
    return {
        "agent_id": owner_id or episode.metadata.get("agent_id", "unknown"),
        "session_id": episode.session_id,
        "npc_id": episode.npc_id,
        "location_id": episode.location_id,
        "content": episode.content,
        "timestamp": episode.timestamp.isoformat(),
        "importance": episode.importance,
    }


def as_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC so they compare with stored stamps."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _importance_from_metadata(raw: Any) -> float:
    try:
        value = float(raw)
    except (TypeError, ValueError):
        return 0.5
    if math.isnan(value):
        return 0.5
    return max(0.0, min(1.0, value))


def _episode_from_metadata(match: VectorMatch) -> EpisodicMemory:
    """Best-effort local view of an episode that only exists in the store."""
    meta = match.metadata
    raw_ts = meta.get("timestamp")
    try:
        timestamp = as_utc(datetime.fromisoformat(raw_ts)) if isinstance(raw_ts, str) else utcnow()
    except ValueError:
        timestamp = utcnow()
    return EpisodicMemory(
        id=match.id,
        content=str(meta.get("content") or ""),
        metadata=dict(meta),
        timestamp=timestamp,
        importance=_importance_from_metadata(meta.get("importance", 0.5)),
        access_count=1,
        session_id=str(meta.get("session_id") or ""),
        npc_id=meta.get("npc_id"),
        location_id=meta.get("location_id"),
    )


# ============================================================================
# Tiered memory
# ============================================================================


class TieredMemory:
    """Working, episodic, and semantic memory for a single agent."""

    def __init__(
        self,
        config: Optional[MemoryConfig] = None,
        *,
        owner_id: Optional[str] = None,
        vector_store: Optional[VectorStore] = None,
        embed: Optional[EmbedFunction] = None,
        recall_strategy: Optional[RecallStrategy] = None,
    ) -> None:
        """Create a memory instance.

        Args:
            config: Capacity/recall settings (defaults to ``MemoryConfig()``)
            owner_id: Agent id stamped on vector store metadata and used to
                scope vector queries to this agent
            vector_store: Optional external store for episodic embeddings
            embed: Optional embedding function
            recall_strategy: Explicit strategy; otherwise ``VectorRecall`` when
                both ``vector_store`` and ``embed`` are given, else
                ``SubstringRecall``
        """
        self.config = config or MemoryConfig()
        self.owner_id = owner_id

        if recall_strategy is None:
            if vector_store is not None and embed is not None:
                recall_strategy = VectorRecall(
                    vector_store, embed, threshold=self.config.recall_threshold
                )
            else:
                recall_strategy = SubstringRecall()
        self.recall_strategy = recall_strategy

        self._working: Deque[MemoryItem] = deque()
        self._episodes: Dict[str, EpisodicMemory] = {}
        self._facts: Dict[str, SemanticFact] = {}

        self._working_ids = count(1)
        self._episode_ids = count(1)
        self._fact_ids = count(1)

    # ---- working tier -------------------------------------------------

    def observe(self, content: str, metadata: Optional[Dict[str, Any]] = None) -> MemoryItem:
        """Append to working memory, evicting the oldest items past capacity."""
        item = MemoryItem(
            id=f"wm-{next(self._working_ids)}",
            content=content,
            metadata=dict(metadata or {}),
            timestamp=utcnow(),
            importance=0.5,
        )
        self._working.append(item)
        while len(self._working) > self.config.working_memory_size:
            self._working.popleft()
        return item

    def get_working_memory(self) -> List[MemoryItem]:
        """Working memory contents, oldest first."""
        return list(self._working)

    # ---- episodic tier ------------------------------------------------

    async def remember(
        self,
        content: str,
        *,
        session_id: str = "",
        importance: float = 0.5,
        metadata: Optional[Dict[str, Any]] = None,
        npc_id: Optional[str] = None,
        location_id: Optional[str] = None,
        timestamp: Optional[datetime] = None,
    ) -> EpisodicMemory:
        """Store an episode, embedding it when a vector capability is configured.

        If the tier is over capacity afterwards, the single entry with the
        lowest eviction score is removed (ties go to the oldest insertion).
        A naive ``timestamp`` is read as UTC.
        """
        episode = EpisodicMemory(
            id=f"ep-{next(self._episode_ids)}",
            content=content,
            metadata=dict(metadata or {}),
            timestamp=as_utc(timestamp) if timestamp else utcnow(),
            importance=importance,
            session_id=session_id,
            npc_id=npc_id,
            location_id=location_id,
        )
        self._episodes[episode.id] = episode
        await self.recall_strategy.index(episode, self.owner_id)

        if len(self._episodes) > self.config.episodic_capacity:
            victim: Optional[EpisodicMemory] = None
            for candidate in self._episodes.values():
                if victim is None or candidate.eviction_score < victim.eviction_score:
                    victim = candidate
            if victim is not None:
                del self._episodes[victim.id]
                log_deterministic(
                    f"[Memory] Evicted episode {victim.id} (score={victim.eviction_score:.2f})"
                )
                await self.recall_strategy.discard([victim.id])

        return episode

    async def recall(self, query: str, top_k: int = 5) -> List[EpisodicMemory]:
        """Recall episodes relevant to ``query`` using the configured strategy."""
        return await self.recall_strategy.recall(
            self._episodes, query, top_k, owner_id=self.owner_id
        )

    def get_episodes(self) -> List[EpisodicMemory]:
        """Local episodic memories in insertion order."""
        return list(self._episodes.values())

    # ---- semantic tier ------------------------------------------------

    def learn(
        self,
        content: str,
        *,
        category: FactCategory,
        confidence: float = 0.5,
        evidence: Optional[Iterable[str]] = None,
        importance: float = 0.5,
        metadata: Optional[Dict[str, Any]] = None,
        superseded: bool = False,
        timestamp: Optional[datetime] = None,
    ) -> Optional[SemanticFact]:
        """Store a fact, merging into an existing one with the same (category, content).

        A merge keeps the maximum confidence and appends the new evidence.
        A naive ``timestamp`` is read as UTC.
        Returns None when semantic memory is disabled.
        """
        if not self.config.enable_semantic:
            return None

        category = FactCategory(category)
        new_evidence = list(evidence or [])
        stamp = as_utc(timestamp) if timestamp else utcnow()

        if not superseded:
            for fid, existing in self._facts.items():
                if (
                    not existing.superseded
                    and existing.category == category
                    and existing.content == content
                ):
                    merged = existing.model_copy(
                        update={
                            "confidence": max(existing.confidence, confidence),
                            "evidence": existing.evidence + new_evidence,
                            "timestamp": stamp,
                        }
                    )
                    self._facts[fid] = merged
                    return merged

        fact = SemanticFact(
            id=f"sf-{next(self._fact_ids)}",
            content=content,
            metadata=dict(metadata or {}),
            timestamp=stamp,
            importance=importance,
            category=category,
            confidence=confidence,
            evidence=new_evidence,
            superseded=superseded,
        )
        self._facts[fact.id] = fact
        return fact

    def get_facts(self, category: Optional[FactCategory] = None) -> List[SemanticFact]:
        """Non-superseded facts, optionally filtered by category."""
        facts = [f for f in self._facts.values() if not f.superseded]
        if category is not None:
            category = FactCategory(category)
            facts = [f for f in facts if f.category == category]
        return facts

    def supersede(self, fact_id: str) -> bool:
        """Mark a fact as superseded. Returns False for unknown ids."""
        fact = self._facts.get(fact_id)
        if fact is None:
            return False
        self._facts[fact_id] = fact.model_copy(update={"superseded": True})
        return True

    # ---- housekeeping -------------------------------------------------

    async def forget(self, older_than: datetime) -> None:
        """Delete episodic and semantic entries strictly older than the cutoff.

        A naive cutoff is read as UTC.
        """
        older_than = as_utc(older_than)
        stale_episodes = [eid for eid, ep in self._episodes.items() if ep.timestamp < older_than]
        for eid in stale_episodes:
            del self._episodes[eid]

        stale_facts = [fid for fid, fact in self._facts.items() if fact.timestamp < older_than]
        for fid in stale_facts:
            del self._facts[fid]

        await self.recall_strategy.discard(stale_episodes)

    def clear(self) -> None:
        """Drop every local entry in all three tiers."""
        self._working.clear()
        self._episodes.clear()
        self._facts.clear()

    def summarize(self) -> str:
        """Deterministic text digest used for prompt injection."""
        lines: List[str] = []

        if self._working:
            lines.append(f"[Working Memory: {len(self._working)} items]")
            for item in list(self._working)[-5:]:
                lines.append(f"  - {item.content[:100]}")

        active_facts = self.get_facts()
        if active_facts:
            lines.append(f"[Known Facts: {len(active_facts)}]")
            for fact in active_facts[:10]:
                lines.append(
                    f"  - [{fact.category.value}] {fact.content} ({fact.confidence * 100:.0f}%)"
                )

        lines.append(f"[Episodic Memories: {len(self._episodes)}]")
        return "\n".join(lines)

    def snapshot(self) -> MemorySnapshot:
        timestamps = [m.timestamp for m in self._working]
        timestamps.extend(ep.timestamp for ep in self._episodes.values())
        timestamps.extend(f.timestamp for f in self._facts.values())
        return MemorySnapshot(
            working_memory_size=len(self._working),
            episodic_memory_size=len(self._episodes),
            semantic_fact_count=len(self.get_facts()),
            oldest_memory=min(timestamps) if timestamps else None,
            newest_memory=max(timestamps) if timestamps else None,
        )
