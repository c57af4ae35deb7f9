# etcd_wrapper/app/api/router.py
from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, FastAPI, Request
from fastapi.responses import JSONResponse

from ..bootstrap.cancellation import CancellationToken
from ..runtime.readiness import ReadinessState

logger = logging.getLogger("etcd_wrapper.api.router")

router = APIRouter()


def get_readiness(request: Request) -> ReadinessState:
    return request.app.state.readiness


def get_token(request: Request) -> CancellationToken:
    return request.app.state.token


@router.get("/readyz")
def readyz(state: ReadinessState = Depends(get_readiness)) -> JSONResponse:
    # answered from the last probe result; no probing on the request path
    if state.is_ready:
        return JSONResponse(content=True, status_code=200)
    return JSONResponse(content=False, status_code=503)


@router.post("/stop")
async def stop(token: CancellationToken = Depends(get_token)) -> dict:
    logger.info("POST /stop called, requesting shutdown")
    token.cancel()
    return {"status": "stopping"}


def create_app(state: ReadinessState, token: CancellationToken) -> FastAPI:
    app = FastAPI(title="etcd-wrapper", docs_url=None, redoc_url=None, openapi_url=None)
    app.state.readiness = state
    app.state.token = token
    app.include_router(router)
    return app
