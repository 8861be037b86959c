"""Tests for the section arena and cycle detection."""

from clinical_forms.models.forms import FieldDefinition, SectionNode
from clinical_forms.services.arena import SectionArena, find_cycle


def _section(section_id, parent_id=None, order=0):
    return SectionNode(
        id=section_id, template_id=1, parent_id=parent_id, name=f"s{section_id}", display_order=order
    )


def test_find_cycle_on_forest():
    assert find_cycle({"a": None, "b": "a", "c": "b", "d": None}) is None


def test_find_cycle_detects_self_loop():
    assert find_cycle({"a": "a"}) == ["a"]


def test_find_cycle_detects_transitive_loop():
    cycle = find_cycle({"root": None, "a": "c", "b": "a", "c": "b"})
    assert sorted(cycle) == ["a", "b", "c"]


def test_find_cycle_treats_unknown_parents_as_roots():
    assert find_cycle({"a": "outside"}) is None


def test_siblings_ordered_by_display_order_then_id():
    arena = SectionArena(
        template_id=1,
        sections=[_section(3, order=1), _section(1, order=2), _section(2, order=1)],
        fields=[],
    )
    assert [s.id for s in arena.roots()] == [2, 3, 1]


def test_walk_is_depth_first_in_display_order():
    arena = SectionArena(
        template_id=1,
        sections=[
            _section(1, order=1),
            _section(2, order=2),
            _section(3, parent_id=1, order=2),
            _section(4, parent_id=1, order=1),
            _section(5, parent_id=4),
        ],
        fields=[],
    )
    assert [s.id for s in arena.walk()] == [1, 4, 5, 3, 2]
    assert sorted(arena.descendants(1)) == [3, 4, 5]


def test_fields_indexed_per_section():
    fields = [
        FieldDefinition(id=7, section_id=1, name="b", type="text", display_order=2),
        FieldDefinition(id=8, section_id=1, name="a", type="text", display_order=1),
    ]
    arena = SectionArena(template_id=1, sections=[_section(1)], fields=fields)

    assert [f.id for f in arena.fields_of(1)] == [8, 7]
    assert arena.section_of_field(7).id == 1
    assert arena.fields_of(2) == []
