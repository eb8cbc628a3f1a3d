"""Topic catalog loader."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from engines.validation import ValidationError

_LOGGER = logging.getLogger(__name__)

DEFAULT_SUBJECT = "Math"


class TopicCatalogError(ValidationError):
    """Raised when ``topic_catalog.json`` contains invalid data."""


@dataclass(frozen=True)
class TopicDefinition:
    """Static metadata of one catalog topic."""

    subject: str
    name: str
    description: str
    priority: int
    prerequisites: Tuple[str, ...]


class TopicCatalog:
    """Load per-subject topic sequences from ``topic_catalog.json``."""

    def __init__(self, path: str | Path | None = None) -> None:
        base_path = Path(__file__).resolve().parent
        self.path = Path(path) if path is not None else base_path / "topic_catalog.json"
        self._subjects: Dict[str, List[TopicDefinition]] = {}
        self.reload()

    # ------------------------------------------------------------------
    def reload(self) -> None:
        """Reload topics from disk and validate the structure."""

        if not self.path.exists():
            raise FileNotFoundError(f"Topic catalog file not found: {self.path}")

        with self.path.open("r", encoding="utf-8") as fh:
            raw = json.load(fh)

        if not isinstance(raw, dict) or not raw:
            raise TopicCatalogError("Topic catalog must be a non-empty JSON object keyed by subject")

        subjects: Dict[str, List[TopicDefinition]] = {}
        for subject, entries in raw.items():
            subject_name = str(subject).strip()
            if not subject_name:
                raise TopicCatalogError("Subject names may not be empty")
            if not isinstance(entries, list) or not entries:
                raise TopicCatalogError(f"Subject {subject_name} must list at least one topic")
            subjects[subject_name] = self._parse_subject(subject_name, entries)

        self._subjects = subjects

    @staticmethod
    def _parse_subject(subject: str, entries: list) -> List[TopicDefinition]:
        topics: List[TopicDefinition] = []
        seen_names: set[str] = set()
        seen_priorities: set[int] = set()
        for idx, entry in enumerate(entries, start=1):
            if not isinstance(entry, dict):
                raise TopicCatalogError(f"{subject} entry #{idx} must be a JSON object")
            name = str(entry.get("topic", "")).strip()
            if not name:
                raise TopicCatalogError(f"{subject} entry #{idx} is missing a non-empty 'topic'")
            if name.lower() in seen_names:
                raise TopicCatalogError(f"Duplicate topic in {subject}: {name}")
            priority = entry.get("priority")
            if isinstance(priority, bool) or not isinstance(priority, int) or priority < 1:
                raise TopicCatalogError(f"{subject}/{name} priority must be a positive integer")
            if priority in seen_priorities:
                raise TopicCatalogError(f"Duplicate priority {priority} in {subject}")
            prereqs = entry.get("prerequisites", [])
            if not isinstance(prereqs, list):
                raise TopicCatalogError(f"{subject}/{name} prerequisites must be a list")
            seen_names.add(name.lower())
            seen_priorities.add(priority)
            topics.append(
                TopicDefinition(
                    subject=subject,
                    name=name,
                    description=str(entry.get("description", "")).strip(),
                    priority=priority,
                    prerequisites=tuple(str(p).strip() for p in prereqs),
                )
            )

        for topic in topics:
            for prereq in topic.prerequisites:
                if prereq.lower() not in seen_names:
                    raise TopicCatalogError(
                        f"{subject}/{topic.name} depends on unknown topic {prereq!r}"
                    )
        topics.sort(key=lambda t: t.priority)
        return topics

    # ------------------------------------------------------------------
    def subjects(self) -> Tuple[str, ...]:
        return tuple(self._subjects)

    def resolve_subject(self, subject: str) -> str:
        """Match ``subject`` case-insensitively, falling back to Math."""

        wanted = str(subject).strip().lower()
        for name in self._subjects:
            if name.lower() == wanted:
                return name
        fallback = DEFAULT_SUBJECT if DEFAULT_SUBJECT in self._subjects else next(iter(self._subjects))
        _LOGGER.warning("Unknown subject %r; using %s catalog", subject, fallback)
        return fallback

    def topics(self, subject: str) -> List[TopicDefinition]:
        """Topics of ``subject`` ordered by sequencing priority."""

        return list(self._subjects[self.resolve_subject(subject)])

    def get(self, subject: str, topic: str) -> Optional[TopicDefinition]:
        wanted = topic.strip().lower()
        for definition in self.topics(subject):
            if definition.name.lower() == wanted:
                return definition
        return None

    def foundational(self, subject: str) -> TopicDefinition:
        """The priority-1 entry point of a subject."""

        return self.topics(subject)[0]


@lru_cache(maxsize=1)
def default_catalog() -> TopicCatalog:
    """Bundled catalog, read from disk once per process."""

    return TopicCatalog()


__all__ = [
    "DEFAULT_SUBJECT",
    "TopicCatalogError",
    "TopicDefinition",
    "TopicCatalog",
    "default_catalog",
]
