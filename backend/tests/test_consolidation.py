import pytest

from shipgraph.errors import InvalidConsolidation, NotConsolidated, NotFound
from shipgraph.schemas.records import EntityKind


def test_consolidate_links_both_sides(store, packages, make_package, check_graph):
    parent = make_package()
    child = make_package()

    assert packages.consolidate(child.id, parent.id) is True

    assert store.get(EntityKind.PACKAGE, child.id).parent_id == parent.id
    assert store.get(EntityKind.PACKAGE, parent.id).child_ids == [child.id]
    assert store.get(EntityKind.PACKAGE, child.id).consolidated_at is not None
    check_graph(store)


def test_consolidate_twice_is_idempotent(store, packages, make_package, check_graph):
    parent = make_package()
    child = make_package()

    packages.consolidate(child.id, parent.id)
    packages.consolidate(child.id, parent.id)

    assert store.get(EntityKind.PACKAGE, parent.id).child_ids == [child.id]
    check_graph(store)


def test_no_cycle(packages, make_package):
    a = make_package()
    b = make_package()
    packages.consolidate(a.id, b.id)
    with pytest.raises(InvalidConsolidation):
        packages.consolidate(b.id, a.id)


def test_self_consolidation_rejected(packages, make_package):
    a = make_package()
    with pytest.raises(InvalidConsolidation):
        packages.consolidate(a.id, a.id)


def test_hierarchy_is_one_level(packages, make_package):
    top = make_package()
    middle = make_package()
    leaf = make_package()
    packages.consolidate(middle.id, top.id)

    # a child can't become a parent
    with pytest.raises(InvalidConsolidation):
        packages.consolidate(leaf.id, middle.id)


def test_child_with_other_parent_must_be_deconsolidated_first(store, packages, make_package):
    p1 = make_package()
    p2 = make_package()
    child = make_package()
    packages.consolidate(child.id, p1.id)

    with pytest.raises(InvalidConsolidation):
        packages.consolidate(child.id, p2.id)

    packages.deconsolidate(child.id)
    packages.consolidate(child.id, p2.id)
    assert store.get(EntityKind.PACKAGE, p1.id).child_ids == []
    assert store.get(EntityKind.PACKAGE, p2.id).child_ids == [child.id]


def test_consolidate_missing_package(packages, make_package):
    a = make_package()
    with pytest.raises(NotFound):
        packages.consolidate(a.id, "missing")
    with pytest.raises(NotFound):
        packages.consolidate("missing", a.id)


def test_deconsolidate(store, packages, make_package, check_graph):
    parent = make_package()
    child = make_package()
    packages.consolidate(child.id, parent.id)

    assert packages.deconsolidate(child.id) is True

    got = store.get(EntityKind.PACKAGE, child.id)
    assert got.parent_id is None
    assert got.consolidated_at is None
    assert store.get(EntityKind.PACKAGE, parent.id).child_ids == []
    check_graph(store)


def test_deconsolidate_non_child(packages, make_package):
    a = make_package()
    with pytest.raises(NotConsolidated):
        packages.deconsolidate(a.id)


def test_deconsolidate_with_vanished_parent(store, packages, make_package):
    parent = make_package()
    child = make_package()
    packages.consolidate(child.id, parent.id)
    store.delete(EntityKind.PACKAGE, parent.id)

    assert packages.deconsolidate(child.id) is True
    assert store.get(EntityKind.PACKAGE, child.id).parent_id is None


def test_relationships_view_skips_missing_children(store, packages, make_package):
    parent = make_package()
    kept = make_package()
    gone = make_package()
    packages.consolidate(kept.id, parent.id)
    packages.consolidate(gone.id, parent.id)
    store.delete(EntityKind.PACKAGE, gone.id)

    view = packages.get_with_relationships(parent.id)
    assert view.package.id == parent.id
    assert [c.id for c in view.children] == [kept.id]
    assert view.parent is None

    child_view = packages.get_with_relationships(kept.id)
    assert child_view.parent.id == parent.id
