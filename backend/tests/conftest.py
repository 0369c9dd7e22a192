import pytest

from shipgraph.adapters.mock_notifier import MockNotifier
from shipgraph.db import init_db, make_engine, make_session_factory
from shipgraph.repositories import build_store
from shipgraph.schemas.records import CustomerRecord, EntityKind
from shipgraph.services.index_service import index_keys
from shipgraph.services.load_service import LoadService
from shipgraph.services.package_service import PackageService
from shipgraph.services.reconciliation_service import Reconciler


@pytest.fixture
def engine(tmp_path):
    # a fresh sqlite file per test; both backends share its schema
    eng = make_engine(f"sqlite:///{tmp_path / 'shipgraph_test.db'}")
    init_db(bind=eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return make_session_factory(engine)


@pytest.fixture(params=["relational", "wide_column"])
def store(request, session_factory):
    return build_store(request.param, session_factory)


@pytest.fixture
def notifier():
    return MockNotifier()


@pytest.fixture
def packages(store, notifier):
    return PackageService(store, notifier=notifier)


@pytest.fixture
def loads(store, notifier):
    return LoadService(store, notifier=notifier)


@pytest.fixture
def reconciler(store, tmp_path):
    return Reconciler(store, lock_path=str(tmp_path / "reconcile.lock"), lock_timeout=0.1)


@pytest.fixture
def customer(store):
    c = CustomerRecord(name="Test Customer", email="customer@example.com")
    store.put(c)
    return c


@pytest.fixture
def make_package(packages, customer):
    def _make(**fields):
        data = {"customer_id": customer.id, "weight": 1.0}
        data.update(fields)
        return packages.create_package(data)

    return _make


@pytest.fixture
def make_load(loads):
    def _make(**fields):
        return loads.create_load(**fields)

    return _make


def assert_graph_consistent(store):
    """Both sides of every link agree, and every package's index entries match it."""
    all_packages = {p.id: p for p in store.list(EntityKind.PACKAGE)}
    all_loads = {l.id: l for l in store.list(EntityKind.LOAD)}

    for p in all_packages.values():
        if p.load_id:
            assert p.load_id in all_loads, f"{p.id} points at missing load"
            assert all_loads[p.load_id].package_ids.count(p.id) == 1
        if p.parent_id:
            parent = all_packages[p.parent_id]
            assert p.id in parent.child_ids
            assert parent.parent_id is None
            assert not p.child_ids
        for child_id in p.child_ids:
            assert all_packages[child_id].parent_id == p.id
        assert store.index_entries(p.id) == index_keys(p)

    for load in all_loads.values():
        assert len(load.package_ids) == len(set(load.package_ids))
        for package_id in load.package_ids:
            assert all_packages[package_id].load_id == load.id

    assert store.indexed_package_ids() <= set(all_packages)


@pytest.fixture
def check_graph():
    return assert_graph_consistent
