"""
FastAPI application entrypoint.

Run locally:  uvicorn emr_forms.main:app --reload
"""

import logging

from fastapi import FastAPI

from emr_forms.api.routes import router
from emr_forms.config import settings

logging.basicConfig(level=settings.LOG_LEVEL, format="%(levelname)s | %(name)s | %(message)s")

app = FastAPI(
    title="EMR Form Engine API",
    description=(
        "Form definitions for the EMR form builder: field validation, "
        "conditional visibility, FHIR Questionnaire conversion and "
        "builder sessions with undo/redo."
    ),
    version="1.0.0",
)

app.include_router(router, prefix="/api/v1")
