from datetime import date

import pytest

from shipgraph.errors import InvalidRequest, InvalidTransition, NotFound
from shipgraph.schemas.records import EntityKind, LoadRecord, LoadStatus, ShipmentStatus
from shipgraph.services.assignment_service import AssignmentManager


def test_create_and_get(loads):
    load = loads.create_load(
        departure_date=date(2026, 4, 1),
        default_delivery_date=date(2026, 4, 6),
        delivery_cities=[{"city": "Calgary", "province": "AB"}],
        driver_name="R. Singh",
    )
    got = loads.get_load(load.id)
    assert got.status == LoadStatus.PLANNED
    assert got.departure_date == date(2026, 4, 1)
    assert got.delivery_cities[0].province == "AB"
    assert [l.id for l in loads.list_loads()] == [load.id]


def test_get_missing_load(loads):
    with pytest.raises(NotFound):
        loads.get_load("missing")


def test_transition_cascades_to_members(store, loads, packages, make_package, make_load, check_graph):
    load = make_load()
    a = make_package()
    b = make_package()
    packages.assign_packages([a.id, b.id], load.id)

    result = loads.transition(load.id, "in_transit")
    assert result.load.status == LoadStatus.IN_TRANSIT
    assert result.cascade.succeeded == 2
    assert store.get(EntityKind.PACKAGE, a.id).shipment_status == ShipmentStatus.IN_TRANSIT

    result = loads.transition(load.id, LoadStatus.DELIVERED)
    assert store.get(EntityKind.PACKAGE, b.id).shipment_status == ShipmentStatus.DELIVERED
    assert {p.id for p in packages.find_by_status("delivered")} == {a.id, b.id}
    check_graph(store)


def test_cascade_skips_packages_that_moved_away(store, loads, packages, make_package, make_load):
    load = make_load()
    pkg = make_package()
    packages.assign_packages([pkg.id], load.id)
    # stale membership: the package now points elsewhere
    moved = store.get(EntityKind.PACKAGE, pkg.id).model_copy(update={"load_id": "other"})
    store.put(moved)

    result = loads.transition(load.id, "in_transit")
    assert result.cascade.succeeded == 0
    assert store.get(EntityKind.PACKAGE, pkg.id).shipment_status == ShipmentStatus.READY


def test_illegal_transitions(loads, make_load):
    load = make_load()
    with pytest.raises(InvalidTransition):
        loads.transition(load.id, "delivered")
    with pytest.raises(InvalidRequest):
        loads.transition(load.id, "lost")

    loads.transition(load.id, "in_transit")
    loads.transition(load.id, "complete")
    with pytest.raises(InvalidTransition):
        loads.transition(load.id, "in_transit")


def test_same_status_is_a_no_op(loads, make_load):
    load = make_load()
    result = loads.transition(load.id, "planned")
    assert result.cascade is None
    assert result.load.status == LoadStatus.PLANNED


def test_delivery_city_lookup(loads, make_load):
    load = make_load(default_delivery_date=date(2026, 7, 9))
    loads.update_delivery_cities(
        load.id, [{"city": "Winnipeg", "expected_delivery_date": date(2026, 7, 3)}]
    )

    assert loads.get_expected_delivery_date(load.id, "WINNIPEG ") == date(2026, 7, 3)
    assert loads.get_expected_delivery_date(load.id, "Regina") == date(2026, 7, 9)
    assert loads.get_expected_delivery_date(load.id, None) == date(2026, 7, 9)


def test_delete_load_detaches_members(store, loads, packages, make_package, make_load, check_graph):
    load = make_load()
    a = make_package()
    b = make_package()
    packages.assign_packages([a.id, b.id], load.id)

    assert loads.delete_load(load.id) is True

    assert store.get(EntityKind.LOAD, load.id) is None
    assert store.get(EntityKind.PACKAGE, a.id).load_id is None
    assert store.get(EntityKind.PACKAGE, b.id).load_id is None
    check_graph(store)


def test_refresh_totals(store, loads, make_package, make_load):
    load = make_load()
    pkg = make_package(weight=7.25)
    store.put(store.get(EntityKind.PACKAGE, pkg.id).model_copy(update={"load_id": load.id}))
    store.put(store.get(EntityKind.LOAD, load.id).model_copy(update={"package_ids": [pkg.id]}))

    refreshed = loads.refresh_totals(load.id)
    assert refreshed.total_packages == 1
    assert refreshed.total_weight == 7.25

    with pytest.raises(NotFound):
        loads.refresh_totals("missing")


def _assign_before_load_write(monkeypatch, store, package_id, load_id, when):
    """Run one assignment right before the next load write that matches `when`."""
    fired = []

    def wrap(original):
        def write(record):
            if not fired and isinstance(record, LoadRecord) and when(record):
                fired.append(record.id)
                AssignmentManager(store).assign([package_id], load_id)
            return original(record)
        return write

    monkeypatch.setattr(store, "put", wrap(store.put))
    monkeypatch.setattr(store, "update_load", wrap(store.update_load))
    return fired


def test_transition_keeps_member_assigned_mid_write(
    monkeypatch, store, loads, packages, make_package, make_load, check_graph
):
    load = make_load()
    first = make_package(weight=1.0)
    late = make_package(weight=2.0)
    packages.assign_packages([first.id], load.id)
    fired = _assign_before_load_write(
        monkeypatch, store, late.id, load.id, lambda r: r.status == LoadStatus.IN_TRANSIT
    )

    result = loads.transition(load.id, "in_transit")

    assert fired == [load.id]
    got = store.get(EntityKind.LOAD, load.id)
    assert late.id in got.package_ids
    assert got.total_packages == 2
    assert result.cascade.succeeded == 2
    assert store.get(EntityKind.PACKAGE, late.id).shipment_status == ShipmentStatus.IN_TRANSIT
    check_graph(store)


def test_delivery_cities_update_keeps_member_assigned_mid_write(
    monkeypatch, store, loads, make_package, make_load, check_graph
):
    load = make_load()
    late = make_package()
    fired = _assign_before_load_write(
        monkeypatch, store, late.id, load.id, lambda r: bool(r.delivery_cities)
    )

    updated = loads.update_delivery_cities(load.id, [{"city": "Halifax"}])

    assert fired == [load.id]
    assert updated.package_ids == [late.id]
    assert updated.total_packages == 1
    assert store.get(EntityKind.LOAD, load.id).delivery_cities[0].city == "Halifax"
    check_graph(store)


def test_update_load_leaves_membership_alone(store, packages, make_package, make_load):
    load = make_load()
    pkg = make_package()
    packages.assign_packages([pkg.id], load.id)

    stale = load.model_copy(update={"notes": "dock 4"})
    assert stale.package_ids == []
    got = store.update_load(stale)

    assert got.notes == "dock 4"
    assert got.package_ids == [pkg.id]


def test_delete_load_detaches_unlisted_packages(store, loads, make_package, make_load, check_graph):
    load = make_load()
    pkg = make_package()
    # the package side landed but the membership write never did
    store.put(store.get(EntityKind.PACKAGE, pkg.id).model_copy(update={"load_id": load.id}))
    assert store.get(EntityKind.LOAD, load.id).package_ids == []

    loads.delete_load(load.id)

    assert store.get(EntityKind.PACKAGE, pkg.id).load_id is None
    check_graph(store)


def test_find_by_date(loads, make_load):
    early = make_load(departure_date=date(2026, 5, 1))
    make_load(departure_date=date(2026, 5, 2))
    make_load()

    assert [l.id for l in loads.find_by_date(date(2026, 5, 1))] == [early.id]
    assert [l.id for l in loads.find_by_date("2026-05-01")] == [early.id]
    assert loads.find_by_date(date(2027, 1, 1)) == []
    with pytest.raises(InvalidRequest):
        loads.find_by_date("May 1st")
