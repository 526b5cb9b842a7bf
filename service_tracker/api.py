from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import date
from typing import Literal, Optional

from fastapi import Depends, FastAPI, File, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from service_tracker import core
from service_tracker.config import get_settings
from service_tracker.errors import (
    ConflictError,
    ImportStructureError,
    NotFoundError,
    ServiceTrackerError,
    ValidationError,
)
from service_tracker.logging_config import setup_logging
from service_tracker.models import Address, CustomerFields, Unit, UnitFields
from service_tracker.services import customers, importer, recurrence, reporting, units
from service_tracker.services.data_layer import Store

settings = get_settings()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging(settings)
    logger.info("Service tracker starting, database at %s", settings.resolved_database_path)
    yield


app = FastAPI(
    lifespan=lifespan,
    title="Service Tracker backend",
    version="1.0.0",
    description="Customers, serviced units, due-status and bulk CSV import",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins or ["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

STATUS_BY_ERROR = {
    ValidationError: 400,
    ImportStructureError: 400,
    NotFoundError: 404,
    ConflictError: 409,
}


@app.exception_handler(ServiceTrackerError)
async def service_error_handler(request: Request, exc: ServiceTrackerError):
    status_code = STATUS_BY_ERROR.get(type(exc), 400)
    logger.info("%s %s -> %s: %s", request.method, request.url.path, status_code, exc.message)
    return JSONResponse(
        status_code=status_code,
        content={"detail": exc.message, "reason": exc.reason},
    )


def get_today() -> date:
    return date.today()


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class AddressPayload(CamelModel):
    house_number: Optional[str] = None
    street: Optional[str] = None
    area: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    pincode: Optional[str] = None
    country: Optional[str] = None


class CustomerPayload(CamelModel):
    name: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    address: Optional[AddressPayload] = None

    def to_fields(self) -> CustomerFields:
        address = Address(**self.address.model_dump()) if self.address else Address()
        return CustomerFields(name=self.name, phone=self.phone, email=self.email, address=address)


class UnitPayload(CamelModel):
    customer_id: Optional[int] = None
    display_name: Optional[str] = None
    type: Optional[str] = None
    service_interval_days: Optional[int] = None
    last_service_date: Optional[str] = None
    next_service_date: Optional[str] = None

    def to_fields(self) -> UnitFields:
        return UnitFields(**self.model_dump())


class ServiceCompletionRequest(CamelModel):
    service_date: Optional[str] = None


def _unit_payload(unit: Unit, today: date) -> dict:
    status = recurrence.classify(unit.next_service_date, today, settings.due_soon_days)
    return {**unit.to_dict(), "status": status.to_dict()}


def camelize(value):
    """Rename snake_case keys to the camelCase names the client reads."""
    if isinstance(value, dict):
        return {(to_camel(k) if "_" in k else k): camelize(v) for k, v in value.items()}
    if isinstance(value, list):
        return [camelize(v) for v in value]
    return value


def _data(payload) -> dict:
    return {"data": camelize(payload)}


@app.get("/healthz")
def healthcheck(store: Store = Depends(core.get_store)):
    return {"status": "ok", "hasData": store.db_has_data()}


@app.get("/kpi")
def kpi(store: Store = Depends(core.get_store), today: date = Depends(get_today)):
    return _data(core.get_kpis(store, today))


@app.get("/dashboard")
def dashboard(store: Store = Depends(core.get_store), today: date = Depends(get_today)):
    customers_df, units_df = store.load_frames()
    return _data(reporting.build_dashboard(customers_df, units_df, today, settings.due_soon_days))


# Customers


@app.get("/customers")
def list_customers(search: Optional[str] = None, store: Store = Depends(core.get_store)):
    return _data([c.to_dict() for c in customers.list_customers(store, search)])


@app.post("/customers", status_code=201)
def create_customer(payload: CustomerPayload, store: Store = Depends(core.get_store)):
    return _data(customers.create_customer(store, payload.to_fields()).to_dict())


@app.get("/customers/{customer_id}")
def get_customer(customer_id: int, store: Store = Depends(core.get_store)):
    return _data(customers.get_customer(store, customer_id).to_dict())


@app.put("/customers/{customer_id}")
def update_customer(
    customer_id: int, payload: CustomerPayload, store: Store = Depends(core.get_store)
):
    return _data(customers.update_customer(store, customer_id, payload.to_fields()).to_dict())


@app.delete("/customers/{customer_id}", status_code=204)
def delete_customer(customer_id: int, store: Store = Depends(core.get_store)):
    customers.delete_customer(store, customer_id)


# Units


@app.get("/units")
def list_units(store: Store = Depends(core.get_store), today: date = Depends(get_today)):
    return _data([_unit_payload(u, today) for u in units.list_units(store)])


@app.get("/units/due")
def units_due(
    filter: Literal["today", "week", "month", "overdue"] = "week",
    store: Store = Depends(core.get_store),
    today: date = Depends(get_today),
):
    due = units.units_due(store, filter, today, settings.due_soon_days)
    return _data([{**u.to_dict(), "status": s.to_dict()} for u, s in due])


@app.get("/units/customer/{customer_id}")
def units_for_customer(
    customer_id: int, store: Store = Depends(core.get_store), today: date = Depends(get_today)
):
    return _data([_unit_payload(u, today) for u in units.list_units_for_customer(store, customer_id)])


@app.get("/units/{unit_id}")
def get_unit(unit_id: int, store: Store = Depends(core.get_store), today: date = Depends(get_today)):
    return _data(_unit_payload(units.get_unit(store, unit_id), today))


@app.get("/units/{unit_id}/status")
def unit_status(
    unit_id: int, store: Store = Depends(core.get_store), today: date = Depends(get_today)
):
    return _data(units.unit_status(store, unit_id, today, settings.due_soon_days).to_dict())


@app.post("/units", status_code=201)
def create_unit(
    payload: UnitPayload, store: Store = Depends(core.get_store), today: date = Depends(get_today)
):
    unit = units.create_unit(store, payload.to_fields(), today)
    return _data(_unit_payload(unit, today))


@app.put("/units/{unit_id}")
def update_unit(
    unit_id: int,
    payload: UnitPayload,
    store: Store = Depends(core.get_store),
    today: date = Depends(get_today),
):
    unit = units.update_unit(store, unit_id, payload.to_fields(), today)
    return _data(_unit_payload(unit, today))


@app.delete("/units/{unit_id}", status_code=204)
def delete_unit(unit_id: int, store: Store = Depends(core.get_store)):
    units.delete_unit(store, unit_id)


@app.post("/units/{unit_id}/service-completion")
def register_service_completion(
    unit_id: int,
    payload: ServiceCompletionRequest,
    store: Store = Depends(core.get_store),
    today: date = Depends(get_today),
):
    unit = units.complete_service(store, unit_id, payload.service_date, today)
    return _data(_unit_payload(unit, today))


# Import


@app.post("/import")
async def import_csv(
    file: UploadFile = File(...),
    store: Store = Depends(core.get_store),
    today: date = Depends(get_today),
):
    content = await file.read()
    result = importer.import_csv(store, content, today, max_bytes=settings.max_import_bytes)
    return _data(result.to_dict())


@app.get("/import/template")
def import_template():
    return PlainTextResponse(
        importer.import_template_csv(),
        media_type="text/csv",
        headers={"Content-Disposition": 'attachment; filename="service_import_template.csv"'},
    )
