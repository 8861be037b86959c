"""
Arena view of one template's section forest.

All sections and fields of a template are loaded with one query per table and
indexed by id; parent/child relations are kept as id lists. Sibling order is
``display_order`` ascending with ties broken by id ascending.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from typing import Hashable, Iterator, Mapping

from sqlalchemy.orm import Session

from clinical_forms.models.forms import FieldDefinition, SectionNode

logger = logging.getLogger(__name__)


def _sibling_key(node) -> tuple[int, int]:
    return (node.display_order or 0, node.id or 0)


def find_cycle(parents: Mapping[Hashable, Hashable | None]) -> list[Hashable] | None:
    """
    Return one cycle of a child -> parent mapping, or None if it is a forest.

    Keys missing from the mapping are treated as roots.
    """
    state: dict[Hashable, int] = {}  # 1 = on current path, 2 = known acyclic
    for start in parents:
        path: list[Hashable] = []
        node = start
        while node is not None and state.get(node) != 2:
            if state.get(node) == 1:
                return path[path.index(node):]
            state[node] = 1
            path.append(node)
            node = parents.get(node)
        for visited in path:
            state[visited] = 2
    return None


class SectionArena:
    """Sections and fields of one template, keyed by id."""

    def __init__(
        self,
        template_id: int,
        sections: list[SectionNode],
        fields: list[FieldDefinition],
    ):
        self.template_id = template_id
        self.sections: dict[int, SectionNode] = {s.id: s for s in sections}
        self.fields: dict[int, FieldDefinition] = {f.id: f for f in fields}
        self._children: dict[int | None, list[int]] = defaultdict(list)
        self._fields_by_section: dict[int, list[int]] = defaultdict(list)
        self._index()

    @classmethod
    def load(cls, db: Session, template_id: int) -> SectionArena:
        sections = (
            db.query(SectionNode).filter(SectionNode.template_id == template_id).all()
        )
        section_ids = [s.id for s in sections]
        fields = (
            db.query(FieldDefinition)
            .filter(FieldDefinition.section_id.in_(section_ids))
            .all()
            if section_ids
            else []
        )
        logger.debug(
            "Loaded arena for template %s: %d sections, %d fields",
            template_id, len(sections), len(fields),
        )
        return cls(template_id, sections, fields)

    def _index(self) -> None:
        for section in self.sections.values():
            parent = section.parent_id if section.parent_id in self.sections else None
            self._children[parent].append(section.id)
        for field in self.fields.values():
            self._fields_by_section[field.section_id].append(field.id)
        for ids in self._children.values():
            ids.sort(key=lambda i: _sibling_key(self.sections[i]))
        for ids in self._fields_by_section.values():
            ids.sort(key=lambda i: _sibling_key(self.fields[i]))

    def roots(self) -> list[SectionNode]:
        return [self.sections[i] for i in self._children.get(None, [])]

    def children_of(self, section_id: int) -> list[SectionNode]:
        return [self.sections[i] for i in self._children.get(section_id, [])]

    def fields_of(self, section_id: int) -> list[FieldDefinition]:
        return [self.fields[i] for i in self._fields_by_section.get(section_id, [])]

    def walk(self) -> Iterator[SectionNode]:
        """Depth-first, pre-order, siblings in display order."""
        stack = list(reversed(self.roots()))
        while stack:
            section = stack.pop()
            yield section
            stack.extend(reversed(self.children_of(section.id)))

    def descendants(self, section_id: int) -> list[int]:
        """Ids of every section below ``section_id`` (not including it)."""
        found: list[int] = []
        stack = list(self._children.get(section_id, []))
        while stack:
            current = stack.pop()
            found.append(current)
            stack.extend(self._children.get(current, []))
        return found

    def section_of_field(self, field_id: int) -> SectionNode | None:
        field = self.fields.get(field_id)
        return self.sections.get(field.section_id) if field is not None else None

    def __len__(self) -> int:
        return len(self.sections)
