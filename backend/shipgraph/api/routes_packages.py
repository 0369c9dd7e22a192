from datetime import date, datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from shipgraph.adapters.mock_notifier import MockNotifier, get_notifier
from shipgraph.errors import GraphError
from shipgraph.repositories import EntityStore, get_store
from shipgraph.schemas.records import LabelStatus, PaymentStatus
from shipgraph.services.package_service import PackageService

router = APIRouter(tags=["packages"])


class PackageIn(BaseModel):
    customer_id: str
    received_date: Optional[date] = None
    barcode: Optional[str] = None
    weight: float = Field(0.0, ge=0)
    length: float = Field(0.0, ge=0)
    width: float = Field(0.0, ge=0)
    height: float = Field(0.0, ge=0)
    description: Optional[str] = None
    ship_to_name: Optional[str] = None
    ship_to_city: Optional[str] = None
    label_status: Optional[LabelStatus] = None
    payment_status: Optional[PaymentStatus] = None
    tracking_number: Optional[str] = None


class BulkAssignIn(BaseModel):
    package_ids: List[str] = Field(..., min_length=1)
    load_id: str


class BulkStatusIn(BaseModel):
    package_ids: List[str] = Field(..., min_length=1)
    status: str


class StatusIn(BaseModel):
    status: str


class DeliveredIn(BaseModel):
    delivered_at: Optional[datetime] = None


class ConsolidateIn(BaseModel):
    parent_id: str


def _service(store: EntityStore, notifier: MockNotifier) -> PackageService:
    return PackageService(store, notifier=notifier)


@router.post("", summary="Create package (intake)")
def create_package(
    payload: PackageIn,
    store: EntityStore = Depends(get_store),
    notifier: MockNotifier = Depends(get_notifier),
):
    svc = _service(store, notifier)
    try:
        package = svc.create_package(payload.model_dump())
    except GraphError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
    return package.model_dump(mode="json")


@router.get("/stats", summary="Package counts by assignment and shipment status")
def package_stats(store: EntityStore = Depends(get_store)):
    try:
        return PackageService(store).package_stats()
    except GraphError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))


@router.get("/search", summary="Search by tracking number, barcode or recipient")
def search(
    q: str = Query(..., description="At least two characters"),
    limit: int = Query(50, ge=1, le=500),
    store: EntityStore = Depends(get_store),
):
    try:
        packages = PackageService(store).search(q, limit=limit)
    except GraphError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
    return [p.model_dump(mode="json") for p in packages]


@router.get("/by-load-status", summary="Packages by assignment bucket")
def by_load_status(status: Optional[str] = Query(None), store: EntityStore = Depends(get_store)):
    try:
        packages = PackageService(store).packages_by_load_status(status)
    except GraphError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
    return [p.model_dump(mode="json") for p in packages]


@router.get("/by-customer/{customer_id}/summary", summary="A customer's packages grouped by stage")
def customer_summary(customer_id: str, store: EntityStore = Depends(get_store)):
    try:
        groups = PackageService(store).customer_packages_with_status(customer_id)
    except GraphError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
    return {name: [p.model_dump(mode="json") for p in group] for name, group in groups.items()}


@router.get("/by-customer/{customer_id}", summary="Packages of a customer")
def by_customer(customer_id: str, store: EntityStore = Depends(get_store)):
    try:
        packages = PackageService(store).find_by_customer(customer_id)
    except GraphError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
    return [p.model_dump(mode="json") for p in packages]


@router.get("/by-date/{received_date}", summary="Packages received on a date")
def by_date(received_date: date, store: EntityStore = Depends(get_store)):
    try:
        packages = PackageService(store).find_by_date(received_date)
    except GraphError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
    return [p.model_dump(mode="json") for p in packages]


@router.get("/by-status/{status}", summary="Packages with a shipment status")
def by_status(status: str, store: EntityStore = Depends(get_store)):
    try:
        packages = PackageService(store).find_by_status(status)
    except GraphError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
    return [p.model_dump(mode="json") for p in packages]


@router.post("/bulk-assign", summary="Assign packages to a load (best effort)")
def bulk_assign(
    payload: BulkAssignIn,
    store: EntityStore = Depends(get_store),
    notifier: MockNotifier = Depends(get_notifier),
):
    try:
        result = _service(store, notifier).assign_packages(payload.package_ids, payload.load_id)
    except GraphError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
    return result.to_dict()


@router.post("/bulk-status", summary="Set shipment status on many packages (best effort)")
def bulk_status(
    payload: BulkStatusIn,
    store: EntityStore = Depends(get_store),
    notifier: MockNotifier = Depends(get_notifier),
):
    svc = _service(store, notifier)
    try:
        result = svc.bulk.update_statuses(payload.package_ids, payload.status)
    except GraphError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
    return result.to_dict()


@router.get("/{package_id}", summary="Get package")
def get_package(package_id: str, store: EntityStore = Depends(get_store)):
    try:
        package = PackageService(store).get_package(package_id)
    except GraphError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
    return package.model_dump(mode="json")


@router.get("/{package_id}/relationships", summary="Package with its parent and children")
def get_relationships(package_id: str, store: EntityStore = Depends(get_store)):
    try:
        result = PackageService(store).get_with_relationships(package_id)
    except GraphError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
    return result.model_dump(mode="json")


@router.get("/{package_id}/expected-delivery", summary="Expected delivery date")
def expected_delivery(package_id: str, store: EntityStore = Depends(get_store)):
    try:
        expected = PackageService(store).get_expected_delivery_date(package_id)
    except GraphError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
    return {
        "package_id": package_id,
        "expected_delivery_date": expected.isoformat() if expected else None,
    }


@router.post("/{package_id}/status", summary="Update shipment status")
def update_status(
    package_id: str,
    payload: StatusIn,
    store: EntityStore = Depends(get_store),
    notifier: MockNotifier = Depends(get_notifier),
):
    try:
        package = _service(store, notifier).update_status(package_id, payload.status)
    except GraphError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
    return package.model_dump(mode="json")


@router.post("/{package_id}/delivered", summary="Mark package delivered")
def mark_delivered(
    package_id: str,
    payload: Optional[DeliveredIn] = None,
    store: EntityStore = Depends(get_store),
    notifier: MockNotifier = Depends(get_notifier),
):
    delivered_at = payload.delivered_at if payload else None
    try:
        package = _service(store, notifier).mark_delivered(package_id, delivered_at=delivered_at)
    except GraphError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
    return package.model_dump(mode="json")


@router.post("/{package_id}/unassign", summary="Remove package from its load")
def unassign(package_id: str, store: EntityStore = Depends(get_store)):
    try:
        package = PackageService(store).unassign_package(package_id)
    except GraphError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
    return package.model_dump(mode="json")


@router.post("/{package_id}/consolidate", summary="Consolidate package under a parent")
def consolidate(package_id: str, payload: ConsolidateIn, store: EntityStore = Depends(get_store)):
    try:
        ok = PackageService(store).consolidate(package_id, payload.parent_id)
    except GraphError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
    return {"consolidated": ok, "child_id": package_id, "parent_id": payload.parent_id}


@router.post("/{package_id}/deconsolidate", summary="Remove package from its parent")
def deconsolidate(package_id: str, store: EntityStore = Depends(get_store)):
    try:
        ok = PackageService(store).deconsolidate(package_id)
    except GraphError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
    return {"deconsolidated": ok, "child_id": package_id}


@router.delete("/{package_id}", summary="Delete package")
def delete_package(package_id: str, store: EntityStore = Depends(get_store)):
    try:
        ok = PackageService(store).delete_package(package_id)
    except GraphError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
    return {"deleted": ok, "package_id": package_id}


@router.get("", summary="List packages")
def list_packages(
    limit: int = Query(100, ge=1, le=1000),
    store: EntityStore = Depends(get_store),
):
    try:
        packages = PackageService(store).list_packages(limit=limit)
    except GraphError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
    return [p.model_dump(mode="json") for p in packages]
