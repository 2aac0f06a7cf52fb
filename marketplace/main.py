from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
import logging
import os
from dotenv import load_dotenv

from . import models
from .database import engine
from .exceptions import DomainError
from .routers import bookings, wallets

load_dotenv()

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s"
)
logger = logging.getLogger(__name__)

# Create tables
models.Base.metadata.create_all(bind=engine)

app = FastAPI(title="Service Marketplace Booking API", version="1.0.0")

app.include_router(bookings.router)
app.include_router(wallets.router)


@app.exception_handler(DomainError)
async def domain_error_handler(request: Request, exc: DomainError):
    """Render business errors as {error, code, details}"""
    headers = {"WWW-Authenticate": "Bearer"} if exc.status_code == 401 else None
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers)


def _basket_service_id(body, loc):
    """serviceId of the basket item a validation error points at, if any"""
    if len(loc) < 3 or loc[0] != "body" or loc[1] != "items" or not isinstance(loc[2], int):
        return None
    try:
        return body["items"][loc[2]].get("serviceId")
    except (TypeError, KeyError, IndexError, AttributeError):
        return None


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    """Malformed bodies are a bad request naming the offending field"""
    errors = exc.errors()
    fields = [".".join(str(part) for part in error["loc"] if part != "body") for error in errors]
    first = errors[0] if errors else {}
    message = f"Invalid field {fields[0]}: {first.get('msg')}" if fields else "Invalid request"

    details = {"fields": fields}
    service_id = _basket_service_id(exc.body, first.get("loc", ()))
    if service_id:
        details["serviceId"] = service_id
        message = f"{message} (service {service_id})"

    return JSONResponse(status_code=400, content={"error": message, "code": "bad_request", "details": details})


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return JSONResponse(status_code=500, content={"error": "Internal server error", "code": "server_error", "details": {}})


@app.get("/health")
def health():
    return {"status": "ok"}
