from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from shipgraph.errors import GraphError, NotFound
from shipgraph.repositories import EntityStore, get_store
from shipgraph.schemas.records import CustomerRecord, EntityKind
from shipgraph.services.reconciliation_service import Reconciler

router = APIRouter(prefix="/api/admin", tags=["admin"])


class CustomerIn(BaseModel):
    name: str
    email: Optional[str] = None
    phone: Optional[str] = None


@router.post("/customers", summary="Register a customer")
def create_customer(payload: CustomerIn, store: EntityStore = Depends(get_store)):
    customer = CustomerRecord(**payload.model_dump())
    try:
        store.put(customer)
    except GraphError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
    return customer.model_dump(mode="json")


@router.get("/customers/{customer_id}", summary="Get customer")
def get_customer(customer_id: str, store: EntityStore = Depends(get_store)):
    try:
        customer = store.get(EntityKind.CUSTOMER, customer_id)
        if customer is None:
            raise NotFound("customer", customer_id)
    except GraphError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
    return customer.model_dump(mode="json")


@router.post("/reconcile/packages/{package_id}", summary="Repair links and indexes of one package")
def reconcile_package(package_id: str, store: EntityStore = Depends(get_store)):
    try:
        repair = Reconciler(store).reconcile_package(package_id)
    except GraphError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
    return repair.to_dict()


@router.post("/reconcile/loads/{load_id}", summary="Repair membership and totals of one load")
def reconcile_load(load_id: str, store: EntityStore = Depends(get_store)):
    try:
        repair = Reconciler(store).reconcile_load(load_id)
    except GraphError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
    return repair.to_dict()


@router.post("/reconcile/sweep", summary="Full reconciliation pass")
def sweep(store: EntityStore = Depends(get_store)):
    return Reconciler(store).sweep().to_dict()
