from contextlib import asynccontextmanager

from apscheduler.schedulers.background import BackgroundScheduler
from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from shipgraph.api.health import router as health_router
from shipgraph.api.routes_admin import router as admin_router
from shipgraph.api.routes_loads import router as loads_router
from shipgraph.api.routes_packages import router as packages_router
from shipgraph.config import settings
from shipgraph.db import init_db
from shipgraph.errors import GraphError
from shipgraph.repositories import get_store
from shipgraph.services.reconciliation_service import Reconciler
from shipgraph.utils.log import get_logger

log = get_logger("app", "APP")


@asynccontextmanager
async def lifespan(app: FastAPI):
    # startup; RESET_DB=1 forces a drop & recreate inside init_db
    init_db()

    scheduler = None
    if settings.RECONCILE_INTERVAL_SECONDS > 0:
        scheduler = BackgroundScheduler()

        def sweep_job():
            try:
                Reconciler(get_store()).sweep()
            except GraphError as e:
                log.warning("scheduled sweep failed: %s", e)

        scheduler.add_job(
            sweep_job,
            "interval",
            seconds=settings.RECONCILE_INTERVAL_SECONDS,
            id="reconcile_sweep",
        )
        scheduler.start()

    try:
        yield
    finally:
        if scheduler is not None:
            scheduler.shutdown(wait=False)


app = FastAPI(title="Shipgraph - Backend", version="0.1.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.FRONTEND_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    # bad input is a client error like any other GraphError, reported as 400
    return JSONResponse(status_code=400, content={"detail": jsonable_encoder(exc.errors())})


app.include_router(health_router, prefix="/api", tags=["health"])

app.include_router(packages_router, prefix="/api/packages", tags=["packages"])

app.include_router(loads_router, prefix="/api/loads", tags=["loads"])

app.include_router(admin_router, tags=["admin"])
