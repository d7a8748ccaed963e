"""Wellness advice selection for a detected emotion.

The catalog ships as ``tables/advice.yaml``. Selection avoids repetition by
picking the entry shown least recently for that emotion; the usage map is
persisted through the store.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from companion.core.storage.backend import StoreUnavailable
from companion.domains.wellness.domain_logic.models import utcnow
from companion.domains.wellness.domain_logic.tables import load_table
from companion.domains.wellness.store import ADVICE_USAGE_KEY, MetricStore

logger = logging.getLogger(__name__)

_FALLBACK = {
    "type": "mindfulness",
    "title": "Take a Moment",
    "content": (
        "Take a deep breath and be present in this moment. "
        "Notice what you're feeling without judgment."
    ),
    "duration": 3,
}


@dataclass(frozen=True)
class Advice:
    type: str
    title: str
    content: str
    duration: int | None = None

    @classmethod
    def from_entry(cls, entry: dict[str, Any]) -> Advice:
        return cls(
            type=entry["type"],
            title=entry["title"],
            content=" ".join(str(entry["content"]).split()),
            duration=entry.get("duration"),
        )

    def to_record(self) -> dict[str, Any]:
        return {"type": self.type, "title": self.title, "content": self.content,
                "duration": self.duration}


@dataclass(frozen=True)
class AdvicePreferences:
    disable_breathing: bool = False
    disable_professional: bool = False
    max_duration: int | None = None

    def allows(self, advice: Advice) -> bool:
        if self.disable_breathing and advice.type == "breathing":
            return False
        if self.disable_professional and advice.type == "professional":
            return False
        if self.max_duration and advice.duration and advice.duration > self.max_duration:
            return False
        return True


def least_recently_used(candidates: list[Advice], last_used: dict[str, float]) -> Advice:
    """Entry with the oldest (or no) usage stamp; catalog order breaks ties."""
    return min(candidates, key=lambda a: last_used.get(a.title, 0.0))


class AdviceSelector:
    """Chooses advice for an emotion without repeating itself.

    Usage::

        selector = AdviceSelector(store)
        advice = selector.select("sad", AdvicePreferences(disable_professional=True))
    """

    def __init__(self, store: MetricStore, catalog: dict[str, Any] | None = None) -> None:
        self._store = store
        self._catalog = catalog if catalog is not None else load_table("advice")

    def default(self) -> Advice:
        return Advice.from_entry(self._catalog.get("default") or _FALLBACK)

    def candidates(self, emotion: str, preferences: AdvicePreferences | None = None) -> list[Advice]:
        entries = (self._catalog.get("emotions") or {}).get(emotion) or []
        advice = [Advice.from_entry(e) for e in entries]
        if preferences is not None:
            advice = [a for a in advice if preferences.allows(a)]
        return advice

    def select(
        self,
        emotion: str,
        preferences: AdvicePreferences | None = None,
        now: datetime | None = None,
    ) -> Advice:
        """Least recently shown advice for ``emotion``, recording its use."""
        candidates = self.candidates(emotion, preferences)
        if not candidates:
            return self.default()

        usage = self._store.advice_usage()
        chosen = least_recently_used(candidates, usage.get(emotion, {}))

        stamp = (now or utcnow()).timestamp()

        def record(current: dict[str, dict[str, float]]) -> dict[str, dict[str, float]]:
            per_emotion = {**current.get(emotion, {}), chosen.title: stamp}
            return {**current, emotion: per_emotion}

        try:
            self._store.update(ADVICE_USAGE_KEY, record, default={})
        except StoreUnavailable:
            logger.warning("Store unavailable; advice usage for %s not recorded", emotion)
        return chosen
