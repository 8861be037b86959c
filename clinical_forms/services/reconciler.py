"""
Template reconciliation: apply a desired-state forest to a stored template.

The request is a full description of the template, not a patch. Nodes that
carry an id are updated in place (their id, and every answer pointing at it,
survives), nodes without an id are inserted, and every stored node whose id is
absent from the request is deleted.

The whole request is checked before anything is written: ownership of every
id, uniqueness, parent resolution and acyclicity. Writes then happen in two
passes so a new subsection can name a new parent from the same request: rows
first (ids assigned), parent links second.
"""

from __future__ import annotations

import itertools
import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Union

from sqlalchemy.orm import Session

from clinical_forms.exceptions import InvalidHierarchyError, TemplateIntegrityError
from clinical_forms.models.forms import (
    Answer,
    FieldDefinition,
    FormTemplate,
    SectionNode,
    join_allowed_values,
)
from clinical_forms.schemas.templates import (
    ExistingField,
    ExistingSection,
    NewField,
    NewSection,
    TemplateRequest,
)
from clinical_forms.services.arena import SectionArena, find_cycle

logger = logging.getLogger(__name__)

# ("id", <stored id>) for existing sections, ("new", <n>) for new ones
NodeKey = tuple[str, int]


@dataclass
class ChangeSummary:
    metadata_changed: bool = False
    sections_created: int = 0
    sections_updated: int = 0
    sections_deleted: int = 0
    fields_created: int = 0
    fields_updated: int = 0
    fields_deleted: int = 0

    @property
    def has_changes(self) -> bool:
        return any(asdict(self).values())

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class _PlannedSection:
    key: NodeKey
    descriptor: Union[NewSection, ExistingSection]
    enclosing: NodeKey | None
    parent: NodeKey | None = None
    row: SectionNode | None = None

    @property
    def label(self) -> str:
        if self.key[0] == "id":
            return f"'{self.descriptor.name}' (id {self.key[1]})"
        return f"'{self.descriptor.name}' (new)"


@dataclass
class _PlannedField:
    descriptor: Union[NewField, ExistingField]
    section_key: NodeKey


@dataclass
class _Plan:
    sections: list[_PlannedSection] = field(default_factory=list)
    fields: list[_PlannedField] = field(default_factory=list)
    deleted_section_ids: list[int] = field(default_factory=list)
    deleted_field_ids: list[int] = field(default_factory=list)


def _assign(row: Any, **values: Any) -> bool:
    """Set attributes that differ; report whether anything changed."""
    changed = False
    for name, value in values.items():
        if getattr(row, name) != value:
            setattr(row, name, value)
            changed = True
    return changed


class TemplateReconciler:
    """Diff one desired-state request against one template's stored forest."""

    def __init__(self, db: Session, template: FormTemplate, arena: SectionArena | None = None):
        self.db = db
        self.template = template
        if arena is not None:
            self.arena = arena
        elif template.id is None:
            self.arena = SectionArena(template_id=None, sections=[], fields=[])
        else:
            self.arena = SectionArena.load(db, template.id)

    @property
    def _template_label(self) -> str:
        if self.template.id is None:
            return "the template being created"
        return f"template {self.template.id}"

    def reconcile(self, request: TemplateRequest) -> ChangeSummary:
        plan = self._plan(request)

        summary = ChangeSummary()
        summary.metadata_changed = _assign(
            self.template,
            name=request.name,
            description=request.description,
            specialty_id=request.specialty_id,
            price=request.price,
        )
        created = self.template.id is None
        if created:
            self.db.add(self.template)
            self.db.flush()

        self._write_sections(plan, summary)
        self._write_fields(plan, summary)
        self._delete(plan, summary)

        if summary.has_changes and not created and not summary.metadata_changed:
            # Structural changes alone leave the template row clean; touch it so the version moves once
            self.template.updated_at = datetime.now(timezone.utc)
        self.db.flush()
        logger.info("Reconciled template %s: %s", self.template.id, summary.as_dict())
        return summary

    # ------------------------------------------------------------------
    # Planning – validation only, no writes
    # ------------------------------------------------------------------

    def _plan(self, request: TemplateRequest) -> _Plan:
        plan = _Plan()
        refs: dict[str, NodeKey] = {}
        seen_fields: set[int] = set()
        seen_sections: set[NodeKey] = set()
        new_keys = itertools.count()

        def visit(descriptor, enclosing: NodeKey | None) -> None:
            if isinstance(descriptor, ExistingSection):
                if descriptor.id not in self.arena.sections:
                    raise TemplateIntegrityError(
                        f"Section {descriptor.id} does not belong to {self._template_label}"
                    )
                key: NodeKey = ("id", descriptor.id)
                if key in seen_sections:
                    raise TemplateIntegrityError(
                        f"Section {descriptor.id} appears more than once in the request"
                    )
            else:
                key = ("new", next(new_keys))
            seen_sections.add(key)

            if descriptor.ref is not None:
                if descriptor.ref in refs:
                    raise InvalidHierarchyError(f"Section ref '{descriptor.ref}' is declared twice")
                refs[descriptor.ref] = key

            plan.sections.append(_PlannedSection(key=key, descriptor=descriptor, enclosing=enclosing))

            for field_descriptor in descriptor.fields:
                if isinstance(field_descriptor, ExistingField):
                    if field_descriptor.id not in self.arena.fields:
                        raise TemplateIntegrityError(
                            f"Field {field_descriptor.id} does not belong to {self._template_label}"
                        )
                    if field_descriptor.id in seen_fields:
                        raise TemplateIntegrityError(
                            f"Field {field_descriptor.id} appears more than once in the request"
                        )
                    seen_fields.add(field_descriptor.id)
                plan.fields.append(_PlannedField(descriptor=field_descriptor, section_key=key))

            for child in descriptor.subsections:
                visit(child, key)

        for descriptor in request.sections:
            visit(descriptor, None)

        self._resolve_parents(plan, refs, seen_sections)

        plan.deleted_section_ids = sorted(
            sid for sid in self.arena.sections if ("id", sid) not in seen_sections
        )
        plan.deleted_field_ids = sorted(fid for fid in self.arena.fields if fid not in seen_fields)
        return plan

    def _resolve_parents(
        self, plan: _Plan, refs: dict[str, NodeKey], planned: set[NodeKey]
    ) -> None:
        for section in plan.sections:
            descriptor = section.descriptor
            explicit: NodeKey | None = None
            if descriptor.parent_ref is not None and descriptor.parent_id is not None:
                raise InvalidHierarchyError(
                    f"Section {section.label} names both parent_ref and parent_id"
                )
            if descriptor.parent_ref is not None:
                if descriptor.parent_ref not in refs:
                    raise InvalidHierarchyError(
                        f"Section {section.label} names unknown parent_ref '{descriptor.parent_ref}'"
                    )
                explicit = refs[descriptor.parent_ref]
            elif descriptor.parent_id is not None:
                explicit = ("id", descriptor.parent_id)
                if explicit not in planned:
                    if descriptor.parent_id in self.arena.sections:
                        raise InvalidHierarchyError(
                            f"Section {section.label} has parent {descriptor.parent_id}, "
                            "which is not part of the desired state"
                        )
                    raise InvalidHierarchyError(
                        f"Section {section.label} has parent {descriptor.parent_id}, "
                        f"which is outside {self._template_label}"
                    )

            if explicit is not None and section.enclosing is not None and explicit != section.enclosing:
                raise InvalidHierarchyError(
                    f"Section {section.label} is nested under one section but names another as parent"
                )
            section.parent = explicit if explicit is not None else section.enclosing

        by_key = {s.key: s for s in plan.sections}
        cycle = find_cycle({s.key: s.parent for s in plan.sections})
        if cycle:
            names = " -> ".join(by_key[k].label for k in cycle)
            raise InvalidHierarchyError(f"Section hierarchy contains a cycle: {names}")

    # ------------------------------------------------------------------
    # Writing
    # ------------------------------------------------------------------

    def _write_sections(self, plan: _Plan, summary: ChangeSummary) -> None:
        updated: set[int] = set()

        # Pass 1: rows and ids
        for section in plan.sections:
            descriptor = section.descriptor
            values = dict(
                name=descriptor.name,
                description=descriptor.description,
                display_order=descriptor.display_order,
            )
            if isinstance(descriptor, ExistingSection):
                section.row = self.arena.sections[descriptor.id]
                if _assign(section.row, **values):
                    updated.add(descriptor.id)
            else:
                section.row = SectionNode(template_id=self.template.id, parent_id=None, **values)
                self.db.add(section.row)
                summary.sections_created += 1
        self.db.flush()

        # Pass 2: parent links, now that every id is known
        rows = {s.key: s.row for s in plan.sections}
        for section in plan.sections:
            parent_id = rows[section.parent].id if section.parent is not None else None
            if section.row.parent_id != parent_id:
                section.row.parent_id = parent_id
                if section.key[0] == "id":
                    updated.add(section.row.id)

        summary.sections_updated = len(updated)

    def _write_fields(self, plan: _Plan, summary: ChangeSummary) -> None:
        rows = {s.key: s.row for s in plan.sections}
        for planned in plan.fields:
            descriptor = planned.descriptor
            values = dict(
                section_id=rows[planned.section_key].id,
                name=descriptor.name,
                required=descriptor.required,
                type=descriptor.type.value,
                placeholder=descriptor.placeholder,
                allowed_values=join_allowed_values(descriptor.allowed_values),
                unit=descriptor.unit,
                display_order=descriptor.display_order,
            )
            if isinstance(descriptor, ExistingField):
                if _assign(self.arena.fields[descriptor.id], **values):
                    summary.fields_updated += 1
            else:
                self.db.add(FieldDefinition(**values))
                summary.fields_created += 1
        self.db.flush()

    def _delete(self, plan: _Plan, summary: ChangeSummary) -> None:
        field_ids = plan.deleted_field_ids
        section_ids = plan.deleted_section_ids
        if not field_ids and not section_ids:
            return

        # Answers outlive the structure they answered
        if field_ids:
            self.db.query(Answer).filter(Answer.field_id.in_(field_ids)).update(
                {Answer.field_id: None}, synchronize_session="fetch"
            )
        if section_ids:
            self.db.query(Answer).filter(Answer.section_id.in_(section_ids)).update(
                {Answer.section_id: None}, synchronize_session="fetch"
            )

        for field_id in field_ids:
            self.db.delete(self.arena.fields[field_id])
        self.db.flush()

        # Detach before deleting so row order inside the flush does not matter
        for section_id in section_ids:
            self.arena.sections[section_id].parent_id = None
        self.db.flush()
        for section_id in section_ids:
            self.db.delete(self.arena.sections[section_id])
        self.db.flush()

        summary.fields_deleted = len(field_ids)
        summary.sections_deleted = len(section_ids)
        logger.info(
            "Template %s: deleted sections %s and fields %s",
            self.template.id, section_ids, field_ids,
        )
