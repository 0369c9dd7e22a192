from datetime import date, datetime, timezone

import pytest

from shipgraph.adapters.mock_notifier import MockNotifier
from shipgraph.errors import DeleteForbidden, InvalidRequest, NotFound
from shipgraph.schemas.records import (
    EntityKind,
    LabelStatus,
    PaymentStatus,
    ShipmentStatus,
)
from shipgraph.services.package_service import PackageService


def test_create_requires_existing_customer(packages):
    with pytest.raises(NotFound):
        packages.create_package({"customer_id": "nobody"})
    with pytest.raises(NotFound):
        packages.create_package({})


def test_create_defaults(packages, customer, notifier):
    pkg = packages.create_package({"customer_id": customer.id, "weight": 2.0})

    assert pkg.shipment_status == ShipmentStatus.READY
    assert pkg.received_date == datetime.now(timezone.utc).date()
    assert pkg.barcode.startswith("PKG-")
    assert notifier.sent[-1]["status"] == "ready"
    assert notifier.sent[-1]["package_id"] == pkg.id


def test_create_ignores_graph_fields(packages, customer):
    pkg = packages.create_package(
        {
            "customer_id": customer.id,
            "load_id": "sneaky",
            "parent_id": "sneaky",
            "shipment_status": "delivered",
        }
    )
    assert pkg.load_id is None
    assert pkg.parent_id is None
    assert pkg.shipment_status == ShipmentStatus.READY


def test_create_rejects_bad_data(packages, customer):
    with pytest.raises(InvalidRequest):
        packages.create_package({"customer_id": customer.id, "weight": "heavy"})


def test_get_missing_package(packages):
    with pytest.raises(NotFound):
        packages.get_package("missing")


def test_consolidate_then_delete_child(store, packages, make_package, check_graph):
    p1 = make_package()
    p2 = make_package()
    packages.consolidate(p2.id, p1.id)

    assert packages.delete_package(p2.id) is True

    assert p2.id not in store.get(EntityKind.PACKAGE, p1.id).child_ids
    assert store.get(EntityKind.PACKAGE, p2.id) is None
    assert store.index_entries(p2.id) == set()
    check_graph(store)


def test_delete_parent_releases_children(store, packages, make_package, make_load, check_graph):
    parent = make_package()
    c1 = make_package()
    c2 = make_package()
    load = make_load()
    packages.consolidate(c1.id, parent.id)
    packages.consolidate(c2.id, parent.id)
    packages.assign_packages([parent.id], load.id)

    packages.delete_package(parent.id)

    assert store.get(EntityKind.PACKAGE, c1.id).parent_id is None
    assert store.get(EntityKind.PACKAGE, c2.id).parent_id is None
    assert store.get(EntityKind.LOAD, load.id).package_ids == []
    assert store.get(EntityKind.LOAD, load.id).total_packages == 0
    check_graph(store)


def test_delete_forbidden_once_label_paid(store, packages, make_package):
    pkg = make_package(label_status=LabelStatus.PURCHASED, payment_status=PaymentStatus.PAID)
    with pytest.raises(DeleteForbidden):
        packages.delete_package(pkg.id)
    assert store.get(EntityKind.PACKAGE, pkg.id) is not None

    # purchased but unpaid can still go
    other = make_package(label_status=LabelStatus.PURCHASED)
    assert packages.delete_package(other.id) is True


def test_delete_missing_package(packages):
    with pytest.raises(NotFound):
        packages.delete_package("missing")


def test_expected_delivery_date(packages, make_package, make_load):
    load = make_load(
        default_delivery_date=date(2026, 6, 10),
        delivery_cities=[{"city": "Montreal", "expected_delivery_date": date(2026, 6, 4)}],
    )
    in_city = make_package(ship_to_city="montreal")
    elsewhere = make_package(ship_to_city="Halifax")
    unassigned = make_package(ship_to_city="Montreal")
    packages.assign_packages([in_city.id, elsewhere.id], load.id)

    assert packages.get_expected_delivery_date(in_city.id) == date(2026, 6, 4)
    assert packages.get_expected_delivery_date(elsewhere.id) == date(2026, 6, 10)
    assert packages.get_expected_delivery_date(unassigned.id) is None


def test_mark_delivered(store, packages, notifier, make_package):
    pkg = make_package()
    when = datetime(2026, 2, 1, 15, 30)

    delivered = packages.mark_delivered(pkg.id, delivered_at=when)

    assert delivered.shipment_status == ShipmentStatus.DELIVERED
    assert store.get(EntityKind.PACKAGE, pkg.id).delivery_date.replace(tzinfo=None) == when
    assert notifier.sent[-1]["status"] == "delivered"
    assert [p.id for p in packages.find_by_status("delivered")] == [pkg.id]


def test_update_status_rejects_unknown_value(packages, make_package):
    pkg = make_package()
    with pytest.raises(InvalidRequest):
        packages.update_status(pkg.id, "teleported")


def test_notification_failure_is_swallowed(store, customer):
    svc = PackageService(store, notifier=MockNotifier(fail=True))
    pkg = svc.create_package({"customer_id": customer.id})

    updated = svc.update_status(pkg.id, "in_transit")

    assert updated.shipment_status == ShipmentStatus.IN_TRANSIT
    assert store.get(EntityKind.PACKAGE, pkg.id).shipment_status == ShipmentStatus.IN_TRANSIT
    assert svc.notifier.sent == []


def test_package_stats(packages, make_package, make_load):
    a = make_package()
    b = make_package()
    make_package()
    load = make_load()
    packages.assign_packages([a.id, b.id], load.id)
    packages.update_status(b.id, "in_transit")

    assert packages.package_stats() == {
        "unassigned": 1,
        "assigned": 1,
        "in_transit": 1,
        "delivered": 0,
        "total": 3,
    }


def test_customer_packages_grouped_by_stage(packages, customer, make_package, make_load):
    fresh = make_package()
    tracked = make_package(tracking_number="1Z999", label_status=LabelStatus.PURCHASED)
    quoted = make_package(label_status=LabelStatus.QUOTED)
    moving = make_package()
    done = make_package()
    load = make_load()
    packages.assign_packages([moving.id], load.id)
    packages.update_status(moving.id, "in_transit")
    packages.mark_delivered(done.id)

    groups = packages.customer_packages_with_status(customer.id)

    assert len(groups["all"]) == 5
    assert {p.id for p in groups["received"]} == {fresh.id, quoted.id}
    assert {p.id for p in groups["ready_to_ship"]} == {tracked.id, quoted.id}
    assert [p.id for p in groups["shipped"]] == [moving.id]
    assert [p.id for p in groups["resolved"]] == [done.id]
    assert packages.customer_packages_with_status("nobody")["all"] == []


def test_packages_by_load_status(packages, make_package, make_load):
    loose = make_package()
    loaded = make_package()
    packages.assign_packages([loaded.id], make_load().id)

    assert len(packages.packages_by_load_status()) == 2
    assert [p.id for p in packages.packages_by_load_status("unassigned")] == [loose.id]
    assert [p.id for p in packages.packages_by_load_status("assigned")] == [loaded.id]
    assert packages.packages_by_load_status("in_transit") == []
    assert packages.packages_by_load_status("sideways") == []


def test_search(packages, make_package):
    by_tracking = make_package(tracking_number="1ZQX777")
    by_name = make_package(ship_to_name="Marie Tremblay")
    make_package(barcode="PKG-OTHER")

    assert [p.id for p in packages.search("qx7")] == [by_tracking.id]
    assert [p.id for p in packages.search("TREMBLAY")] == [by_name.id]
    assert packages.search("z") == []
    assert packages.search("") == []
    assert len(packages.search("PKG", limit=2)) == 2
