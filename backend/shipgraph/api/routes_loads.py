from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from shipgraph.adapters.mock_notifier import MockNotifier, get_notifier
from shipgraph.errors import GraphError
from shipgraph.repositories import EntityStore, get_store
from shipgraph.schemas.records import DeliveryCity
from shipgraph.services.load_service import LoadService
from shipgraph.services.package_service import PackageService

router = APIRouter(tags=["loads"])


class LoadIn(BaseModel):
    departure_date: Optional[date] = None
    default_delivery_date: Optional[date] = None
    delivery_cities: List[DeliveryCity] = Field(default_factory=list)
    transport_mode: str = "truck"
    driver_name: Optional[str] = None
    notes: Optional[str] = None


class LoadStatusIn(BaseModel):
    status: str


class DeliveryCitiesIn(BaseModel):
    delivery_cities: List[DeliveryCity]


class AssignIn(BaseModel):
    package_ids: List[str] = Field(..., min_length=1)


@router.post("", summary="Create load")
def create_load(payload: LoadIn, store: EntityStore = Depends(get_store)):
    try:
        load = LoadService(store).create_load(**payload.model_dump())
    except GraphError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
    return load.model_dump(mode="json")


@router.get("", summary="List loads")
def list_loads(
    limit: int = Query(100, ge=1, le=1000),
    store: EntityStore = Depends(get_store),
):
    try:
        loads = LoadService(store).list_loads(limit=limit)
    except GraphError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
    return [load.model_dump(mode="json") for load in loads]


@router.get("/by-date/{departure_date}", summary="Loads departing on a date")
def by_date(departure_date: date, store: EntityStore = Depends(get_store)):
    try:
        loads = LoadService(store).find_by_date(departure_date)
    except GraphError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
    return [load.model_dump(mode="json") for load in loads]


@router.get("/{load_id}", summary="Get load")
def get_load(load_id: str, store: EntityStore = Depends(get_store)):
    try:
        load = LoadService(store).get_load(load_id)
    except GraphError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
    return load.model_dump(mode="json")


@router.post("/{load_id}/status", summary="Move load to a new status")
def transition(
    load_id: str,
    payload: LoadStatusIn,
    store: EntityStore = Depends(get_store),
    notifier: MockNotifier = Depends(get_notifier),
):
    try:
        result = LoadService(store, notifier=notifier).transition(load_id, payload.status)
    except GraphError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
    return {
        "load": result.load.model_dump(mode="json"),
        "cascade": result.cascade.to_dict() if result.cascade else None,
    }


@router.put("/{load_id}/delivery-cities", summary="Replace delivery cities")
def update_delivery_cities(
    load_id: str, payload: DeliveryCitiesIn, store: EntityStore = Depends(get_store)
):
    try:
        load = LoadService(store).update_delivery_cities(load_id, payload.delivery_cities)
    except GraphError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
    return load.model_dump(mode="json")


@router.post("/{load_id}/assign-packages", summary="Assign packages to this load")
def assign_packages(
    load_id: str,
    payload: AssignIn,
    store: EntityStore = Depends(get_store),
    notifier: MockNotifier = Depends(get_notifier),
):
    try:
        svc = PackageService(store, notifier=notifier)
        result = svc.assign_packages(payload.package_ids, load_id)
    except GraphError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
    return result.to_dict()


@router.get("/{load_id}/expected-delivery", summary="Expected delivery date for a city")
def expected_delivery(
    load_id: str,
    city: Optional[str] = Query(None),
    store: EntityStore = Depends(get_store),
):
    try:
        expected = LoadService(store).get_expected_delivery_date(load_id, city)
    except GraphError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
    return {
        "load_id": load_id,
        "city": city,
        "expected_delivery_date": expected.isoformat() if expected else None,
    }


@router.delete("/{load_id}", summary="Delete load and detach its packages")
def delete_load(load_id: str, store: EntityStore = Depends(get_store)):
    try:
        ok = LoadService(store).delete_load(load_id)
    except GraphError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
    return {"deleted": ok, "load_id": load_id}
