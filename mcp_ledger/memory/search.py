# mcp_ledger/memory/search.py
import logging
import re
from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, Optional, Sequence, Tuple

from .models import EntityWithObservations, MemoryEntity, MemoryObservation, SearchResult

logger = logging.getLogger(__name__)


class AbstractSearchStrategy(ABC):
    """
    Ranks the candidate entities of one scoped search.

    Implementations receive every entity in scope (with observations) and
    return at most `limit` results. A ranked or embedding-backed strategy can
    replace the lexical one without touching callers.
    """

    @abstractmethod
    async def search(
        self, candidates: Sequence[EntityWithObservations], query: str, limit: int
    ) -> List[SearchResult]:
        pass


def query_terms(query: str) -> List[str]:
    """Lower-cased keywords of three or more characters; the whole query if there are none."""
    normalized = query.strip().lower()
    words = [w for w in re.split(r"\s+", normalized) if len(w) > 2]
    return words or ([normalized] if normalized else [])


class LexicalSearchStrategy(AbstractSearchStrategy):
    """Case-insensitive substring/keyword matching, most recent match first."""

    async def search(
        self, candidates: Sequence[EntityWithObservations], query: str, limit: int
    ) -> List[SearchResult]:
        terms = query_terms(query)
        if not terms or limit <= 0:
            return []
        phrase = query.strip().lower()

        def matches(text: str) -> int:
            lowered = text.lower()
            hits = sum(1 for term in terms if term in lowered)
            if hits == 0 and phrase and phrase in lowered:
                hits = 1
            return hits

        scored: List[Tuple[datetime, SearchResult]] = []
        for candidate in candidates:
            name_hits = matches(candidate.name)
            best_obs: Optional[MemoryObservation] = None
            best_obs_hits = 0
            for obs in candidate.observations:
                obs_hits = matches(obs.text)
                if obs_hits and (best_obs is None or obs.created_at > best_obs.created_at):
                    best_obs, best_obs_hits = obs, obs_hits
            if not name_hits and best_obs is None:
                continue

            matched_at = candidate.created_at
            if best_obs is not None and best_obs.created_at > matched_at:
                matched_at = best_obs.created_at
            entity = MemoryEntity(**candidate.model_dump(exclude={"observations"}))
            scored.append(
                (matched_at, SearchResult(entity=entity, observation=best_obs, score=max(name_hits, best_obs_hits)))
            )

        scored.sort(key=lambda item: item[1].entity.name.lower())
        scored.sort(key=lambda item: item[0], reverse=True)
        logger.debug(f"Lexical search for {terms} matched {len(scored)} of {len(candidates)} entities.")
        return [result for _, result in scored[:limit]]
