# This file bootstraps the FastAPI app, wires up logging middleware and
# error handlers, and includes the usage and billing routers.

import os

from fastapi import APIRouter, FastAPI, Response
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from metering import models  # noqa: F401  (registers tables on Base)
from metering.api.billing import router as billing_router
from metering.api.usage import router as usage_router
from metering.billing.errors import BillingError
from metering.core.db import Base, engine
from metering.core.logging import APILoggingMiddleware, configure_logging
from metering.core.startup_checks import run_startup_checks


API_V1_PREFIX = "/api/v1"

configure_logging()

# Local and test runs create tables directly; deployments run alembic.
if os.getenv("SKIP_MIGRATIONS") != "1":
    Base.metadata.create_all(bind=engine)

app = FastAPI(title="Tenant Metering")


@app.on_event("startup")
def _run_startup_checks() -> None:
    run_startup_checks()


@app.exception_handler(BillingError)
def handle_billing_error(_request, exc: BillingError):
    response = JSONResponse(status_code=exc.status_code, content=exc.to_payload())
    response.headers["X-Error-Code"] = exc.code
    return response


app.add_middleware(APILoggingMiddleware)

api_v1 = APIRouter(prefix=API_V1_PREFIX)
for r in (usage_router, billing_router):
    api_v1.include_router(r)
app.include_router(api_v1)


# /metrics endpoint (Prometheus scraping)
@app.get("/metrics", include_in_schema=False)
def metrics() -> Response:
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)


@app.get("/ping")
@app.get(f"{API_V1_PREFIX}/health")
def ping():
    return {"message": "pong"}
