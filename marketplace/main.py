"""FastAPI application entry point."""

import logging

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from marketplace.config import settings
from marketplace.errors import ErrorKind, MarketplaceError
from marketplace.middleware import BodySizeLimitMiddleware, RequestLoggingMiddleware
from marketplace.routers import audit, escrow, fees, job_orders, jobs

logger = logging.getLogger(__name__)

app = FastAPI(
    title="Nurse Marketplace",
    description="Job contracts and escrowed payments between event organizers and nurses",
    version="0.1.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Middleware: the last one added is outermost
app.add_middleware(BodySizeLimitMiddleware, max_bytes=settings.max_request_body_bytes)
app.add_middleware(RequestLoggingMiddleware)


@app.exception_handler(MarketplaceError)
async def marketplace_error_handler(request: Request, exc: MarketplaceError) -> JSONResponse:
    if exc.kind == ErrorKind.SYSTEM:
        # Cause was logged where the write was rolled back.
        logger.error("%s on %s %s", exc.code, request.method, request.url.path)
        content = {"detail": "An internal error occurred", "code": exc.code}
    else:
        content = {"detail": exc.message, "code": exc.code}
        if exc.details:
            content["details"] = exc.details
    return JSONResponse(status_code=exc.status_code, content=content)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = [
        {
            "loc": list(err.get("loc", ())),
            "msg": err.get("msg", ""),
            "type": err.get("type", ""),
        }
        for err in exc.errors()
    ]
    return JSONResponse(
        status_code=422,
        content=jsonable_encoder({
            "detail": "Input validation failed",
            "code": "VALIDATION_FAILED",
            "errors": errors,
        }),
    )


# Routers. fees first: /escrow/fees must match before /escrow/{escrow_id}.
app.include_router(fees.router)
app.include_router(jobs.router)
app.include_router(job_orders.router)
app.include_router(escrow.router)
app.include_router(audit.router)


@app.get("/health")
async def health() -> dict[str, str]:
    """Health check endpoint."""
    return {"status": "ok"}
