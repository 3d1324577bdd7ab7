"""API router aggregation; `essay_grader/main.py` mounts `router` under /api/v1."""

from __future__ import annotations

from fastapi import APIRouter

from essay_grader.api import grade as grade_api

router = APIRouter()
router.include_router(grade_api.router)
