from __future__ import annotations

from contextlib import asynccontextmanager

import psycopg2
from fastapi import FastAPI, HTTPException, Request
from loguru import logger

from .infra.config import settings
from .infra.db import ensure_ssv_table
from .infra.logging_config import init_logging
from .ssv.intake import CallbackIntake, CallbackOutcome

_DETAILS = {
    CallbackOutcome.UNAUTHENTICATED: "invalid signature",
    CallbackOutcome.MALFORMED: "malformed payload",
    CallbackOutcome.FAILED: "failed to persist reward",
}


@asynccontextmanager
async def lifespan(_app: FastAPI):
    init_logging()
    if settings.ensure_schema:
        try:
            ensure_ssv_table()
        except psycopg2.Error as e:
            logger.error(f"Could not ensure SSV ledger table: {e}")
    yield


app = FastAPI(lifespan=lifespan)
intake = CallbackIntake()


@app.get("/healthz")
def healthz():
    return {"ok": True}


@app.get("/api/admob/ssv-callback")
def ssv_callback(request: Request):
    """Server-side verification callback for rewarded ads.

    The ad network retries anything other than HTTP 200, so duplicates are
    answered with 200 as well.
    """
    result = intake.process(request.url.query)
    if not result.ok:
        raise HTTPException(status_code=result.outcome.status_code, detail=_DETAILS[result.outcome])
    return {"status": result.outcome.value, "transaction_id": result.transaction_id}
