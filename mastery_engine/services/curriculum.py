"""Curriculum lookup tables.

Every lookup goes through stable IDs: topics, subtopics and knowledge units
are indexed once when the catalog is built and then injected into the
validators, analyzers and schedulers.
"""

import logging
from pathlib import Path
from typing import Optional

import yaml

from mastery_engine.errors import NotFound
from mastery_engine.models.curriculum import (
    FOUNDATIONAL_TOPIC_ID,
    KnowledgeUnit,
    Subtopic,
    Topic,
)

logger = logging.getLogger(__name__)


class CurriculumCatalog:
    """Immutable index of the published curriculum."""

    def __init__(self, topics: list[Topic], subtopics: list[Subtopic], units: list[KnowledgeUnit]):
        self.topics = {t.id: t for t in topics}
        self.subtopics = {s.id: s for s in subtopics}
        self.units = {u.id: u for u in units}

        self._subtopics_by_topic: dict[str, list[Subtopic]] = {}
        for s in sorted(subtopics, key=lambda s: (s.order_index, s.id)):
            self._subtopics_by_topic.setdefault(s.topic_id, []).append(s)

        self._units_by_topic: dict[str, list[KnowledgeUnit]] = {}
        for u in units:
            self._units_by_topic.setdefault(u.topic_id, []).append(u)

    # ── Lookups ───────────────────────────────────────────────────────

    def topic(self, topic_id: str) -> Topic:
        if topic_id not in self.topics:
            raise NotFound(f"Unknown topic: {topic_id}")
        return self.topics[topic_id]

    def has_subtopic(self, subtopic_id: str) -> bool:
        return subtopic_id in self.subtopics

    def unit(self, unit_id: str) -> Optional[KnowledgeUnit]:
        return self.units.get(unit_id)

    def subtopics_for(self, topic_id: str) -> list[Subtopic]:
        return list(self._subtopics_by_topic.get(topic_id, []))

    def units_for_topic(self, topic_id: str) -> list[KnowledgeUnit]:
        return list(self._units_by_topic.get(topic_id, []))

    def foundational_units(self) -> list[KnowledgeUnit]:
        return self.units_for_topic(FOUNDATIONAL_TOPIC_ID)

    def allowed_units(self, topic_id: str) -> dict[str, KnowledgeUnit]:
        """Units a question of this topic may cite: its own plus the foundational pool."""
        allowed = {u.id: u for u in self.units_for_topic(topic_id)}
        for u in self.foundational_units():
            allowed.setdefault(u.id, u)
        return allowed

    def subtopic_rank(self, subtopic_id: str) -> tuple:
        """Curriculum position of a subtopic: (topic order, subtopic order)."""
        sub = self.subtopics.get(subtopic_id)
        if sub is None:
            return (float("inf"), float("inf"), subtopic_id)
        topic = self.topics.get(sub.topic_id)
        topic_order = topic.order_index if topic else float("inf")
        return (topic_order, sub.order_index, subtopic_id)

    # ── Prerequisites ─────────────────────────────────────────────────

    def prerequisite_closure(self, topic_id: str) -> set[str]:
        """All topics that must come before topic_id (transitively)."""
        seen: set[str] = set()
        stack = list(self.topics[topic_id].prerequisite_ids) if topic_id in self.topics else []
        while stack:
            current = stack.pop()
            if current in seen or current == topic_id:
                continue
            seen.add(current)
            if current in self.topics:
                stack.extend(self.topics[current].prerequisite_ids)
        return seen

    def topological_order(self, topic_ids: list[str]) -> list[str]:
        """Kahn's algorithm over the prerequisite edges inside topic_ids.

        Ties are broken by order_index. Topics caught in a cycle are appended
        in order_index order.
        """
        wanted = list(dict.fromkeys(topic_ids))
        in_degree = {tid: 0 for tid in wanted}
        dependents: dict[str, list[str]] = {tid: [] for tid in wanted}
        for tid in wanted:
            for prereq in self.topic(tid).prerequisite_ids:
                if prereq in in_degree and prereq != tid:
                    in_degree[tid] += 1
                    dependents[prereq].append(tid)

        def sort_key(tid: str):
            return (self.topics[tid].order_index, tid)

        ready = sorted([tid for tid, d in in_degree.items() if d == 0], key=sort_key)
        ordered = []
        while ready:
            current = ready.pop(0)
            ordered.append(current)
            for dep in dependents[current]:
                in_degree[dep] -= 1
                if in_degree[dep] == 0:
                    ready.append(dep)
            ready.sort(key=sort_key)

        if len(ordered) < len(wanted):
            remaining = sorted([tid for tid in wanted if tid not in ordered], key=sort_key)
            logger.warning(f"Prerequisite cycle among topics {remaining}; falling back to order_index")
            ordered.extend(remaining)
        return ordered

    # ── Construction ──────────────────────────────────────────────────

    @classmethod
    def from_dict(cls, data: dict) -> "CurriculumCatalog":
        """Build a catalog from the YAML seed layout:

        topics:
          - id, name, order_index, prerequisites: [...]
            subtopics: [{id, name, order_index}]
            units: [{id, code, kind, title, subtopic_id}]
        foundational_units: [{id, code, kind, title}]
        """
        topics, subtopics, units = [], [], []
        for entry in data.get("topics", []):
            topics.append(Topic(
                id=entry["id"],
                name=entry.get("name", ""),
                order_index=entry.get("order_index", len(topics)),
                prerequisite_ids=entry.get("prerequisites", []),
            ))
            for i, sub in enumerate(entry.get("subtopics", [])):
                subtopics.append(Subtopic(
                    id=sub["id"],
                    topic_id=entry["id"],
                    name=sub.get("name", ""),
                    order_index=sub.get("order_index", i),
                ))
            for unit in entry.get("units", []):
                units.append(KnowledgeUnit(topic_id=entry["id"], **unit))
        for unit in data.get("foundational_units", []):
            units.append(KnowledgeUnit(
                topic_id=FOUNDATIONAL_TOPIC_ID,
                kind=unit.get("kind", "foundational"),
                **{k: v for k, v in unit.items() if k != "kind"},
            ))
        return cls(topics, subtopics, units)


def load_catalog_file(path: str | Path) -> CurriculumCatalog:
    """Load a curriculum seed YAML file."""
    with open(path, "r") as f:
        data = yaml.safe_load(f) or {}
    catalog = CurriculumCatalog.from_dict(data)
    logger.info(
        f"Loaded curriculum from {path}: {len(catalog.topics)} topics, "
        f"{len(catalog.subtopics)} subtopics, {len(catalog.units)} units"
    )
    return catalog
