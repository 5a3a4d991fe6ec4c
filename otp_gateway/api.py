"""FastAPI application exposing the OTP gateway."""

from __future__ import annotations

import logging
from functools import lru_cache
from typing import Any

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import AliasChoices, BaseModel, Field

from .config import get_settings
from .exceptions import GatewayError
from .gateway import OtpGateway, build_gateway
from .mailbox import OtpSource

app = FastAPI(title="OTP Gateway")
logger = logging.getLogger(__name__)


@lru_cache(maxsize=1)
def get_gateway() -> OtpGateway:
    """Return the process-wide gateway, built on first use."""
    return build_gateway(get_settings())


class GetOtpPayload(BaseModel):
    account_email: str | None = Field(
        default=None, validation_alias=AliasChoices("accountEmail", "email")
    )
    pin: str | None = None


@app.exception_handler(GatewayError)
async def gateway_error_handler(request: Request, exc: GatewayError) -> JSONResponse:
    logger.info(
        "api.error",
        extra={
            "path": request.url.path,
            "error_type": type(exc).__name__,
            "status": exc.status_code,
        },
    )
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


@app.exception_handler(RequestValidationError)
async def request_validation_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    return JSONResponse(status_code=400, content={"error": "invalid request body"})


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("api.unexpected_error", extra={"path": request.url.path})
    return JSONResponse(status_code=500, content={"error": str(exc) or type(exc).__name__})


@app.post("/get-otp")
async def get_otp(
    payload: GetOtpPayload, gateway: OtpGateway = Depends(get_gateway)
) -> dict[str, Any]:
    lookup = await gateway.get_otp(payload.account_email, payload.pin)
    if lookup.source is OtpSource.TOTP:
        return {"otp": lookup.code, "source": lookup.source.value}
    return {"otp": lookup.code}


@app.post("/sync-rotated-pins")
async def sync_rotated_pins(
    gateway: OtpGateway = Depends(get_gateway),
) -> dict[str, int]:
    report = await gateway.sync_rotated_pins()
    return report.model_dump()


@app.get("/healthz")
async def healthz() -> dict[str, str]:
    return {"status": "ok"}
