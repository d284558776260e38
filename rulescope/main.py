"""
RuleScope FastAPI Application.

  POST /analyze/file → rule-based suggestions for one changed file
  POST /analyze/pr   → pull-request-level rule suggestions
  GET  /health       → {"status": "ok", ...}
  GET  /audit/runs   → recent analysis runs from the audit trail
"""

from __future__ import annotations

import logging

from dotenv import load_dotenv
load_dotenv()

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from rulescope.api.routes.analysis import router as analysis_router
from rulescope.api.routes.audit import router as audit_router
from rulescope.api.routes.health import router as health_router

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("rulescope")

app = FastAPI(
    title="RuleScope",
    description="Rule scope resolution and rule-based review suggestions",
    version="1.0.0",
)

app.include_router(health_router)
app.include_router(analysis_router)
app.include_router(audit_router)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    body = await request.body()
    logger.error(f"Validation Error. Raw body: {body.decode('utf-8')[:500]} | Errors: {exc.errors()}")
    return JSONResponse(
        status_code=422,
        content={"detail": jsonable_encoder(exc.errors()), "body": body.decode("utf-8")[:100]},
    )
