import concurrent.futures

import pytest
from filelock import FileLock

from shipgraph.errors import NotFound
from shipgraph.schemas.records import EntityKind, IndexKey
from shipgraph.services.assignment_service import AssignmentManager


def _raw_update(store, package_id, **fields):
    """Write one side of a link directly, bypassing the managers."""
    pkg = store.get(EntityKind.PACKAGE, package_id).model_copy(update=fields)
    store.put(pkg)
    return pkg


def test_lost_race_leaves_phantom_member(store, packages, reconciler, make_package, make_load, check_graph):
    pkg = make_package(weight=2.0)
    l1 = make_load()
    l2 = make_load()
    packages.assign_packages([pkg.id], l1.id)
    # the other writer won: the package points at l2, but neither load's
    # membership was updated
    _raw_update(store, pkg.id, load_id=l2.id)

    repair = reconciler.reconcile_package(pkg.id)
    assert repair.changed
    assert store.get(EntityKind.LOAD, l2.id).package_ids == [pkg.id]

    load_repair = reconciler.reconcile_load(l1.id)
    assert load_repair.phantoms == [pkg.id]
    assert load_repair.total_packages == 0
    assert store.get(EntityKind.LOAD, l1.id).package_ids == []
    assert store.get(EntityKind.LOAD, l2.id).total_packages == 1
    check_graph(store)


def test_dangling_load_and_parent_are_cleared(store, reconciler, make_package):
    pkg = make_package()
    _raw_update(store, pkg.id, load_id="gone-load", parent_id="gone-parent")

    repair = reconciler.reconcile_package(pkg.id)

    got = store.get(EntityKind.PACKAGE, pkg.id)
    assert got.load_id is None
    assert got.parent_id is None
    assert len(repair.fixes) == 2


def test_parent_side_rebuilt_from_child(store, reconciler, make_package, check_graph):
    parent = make_package()
    child = make_package()
    # crash after the child's commit point, before the parent write
    _raw_update(store, child.id, parent_id=parent.id)

    reconciler.reconcile_package(child.id)

    assert store.get(EntityKind.PACKAGE, parent.id).child_ids == [child.id]
    check_graph(store)


def test_child_entry_without_back_link_is_dropped(store, reconciler, make_package, check_graph):
    parent = make_package()
    child = make_package()
    # parent-side write landed, child commit point never did
    _raw_update(store, parent.id, child_ids=[child.id, "ghost"])

    repair = reconciler.reconcile_package(parent.id)

    assert store.get(EntityKind.PACKAGE, parent.id).child_ids == []
    assert repair.to_dict()["fixes"]
    check_graph(store)


def test_reconcile_package_repairs_indexes(store, reconciler, make_package):
    pkg = make_package()
    store.delete_index(IndexKey("date", pkg.received_date.isoformat(), pkg.id))

    repair = reconciler.reconcile_package(pkg.id)

    assert repair.index.drifted
    assert repair.changed


def test_reconcile_missing_load(reconciler):
    with pytest.raises(NotFound):
        reconciler.reconcile_load("missing")


def test_sweep_repairs_everything(store, packages, reconciler, make_package, make_load, check_graph):
    load = make_load()
    a = make_package()
    b = make_package()
    gone = make_package()
    packages.assign_packages([a.id], load.id)
    _raw_update(store, b.id, load_id=load.id)  # membership write lost
    store.delete(EntityKind.PACKAGE, gone.id)  # index entries orphaned
    store.delete_index(IndexKey("status", "ready", a.id))

    report = reconciler.sweep()

    assert not report.skipped
    assert report.packages_checked == 2
    assert report.loads_checked == 1
    assert set(report.packages_repaired) == {a.id, b.id}
    assert report.orphan_index_ids == [gone.id]
    assert report.errors == {}
    assert store.get(EntityKind.LOAD, load.id).total_packages == 2
    check_graph(store)

    # a second pass finds nothing left to do
    again = reconciler.sweep()
    assert again.packages_repaired == [] and again.loads_repaired == []


def test_sweep_skipped_while_another_holds_the_lock(reconciler):
    holder = FileLock(reconciler.lock_path)
    with holder.acquire(timeout=1):
        report = reconciler.sweep()
    assert report.skipped
    assert report.packages_checked == 0


def test_concurrent_assignment_then_sweep(store, reconciler, make_package, make_load, check_graph):
    l1 = make_load()
    l2 = make_load()
    ids = [make_package(weight=1.0).id for _ in range(6)]
    manager = AssignmentManager(store)

    def worker(i):
        return manager.assign(ids, (l1.id, l2.id)[i % 2])

    with concurrent.futures.ThreadPoolExecutor(max_workers=4) as ex:
        results = list(ex.map(worker, range(8)))
    assert any(r.succeeded for r in results)

    reconciler.sweep()

    check_graph(store)
    assigned = [pid for pid in ids if store.get(EntityKind.PACKAGE, pid).load_id]
    loads = [store.get(EntityKind.LOAD, l.id) for l in (l1, l2)]
    assert assigned
    assert sum(l.total_packages for l in loads) == len(assigned)
