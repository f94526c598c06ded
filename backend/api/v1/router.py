"""API v1 aggregated router.

All v1 endpoints are registered here and mounted under /api/v1 in main.py.
"""

from fastapi import APIRouter

from api.routes import dead_letters, events, runs, workflows

api_v1_router = APIRouter()

# Event ingestion
api_v1_router.include_router(
    events.router,
    prefix="/events",
    tags=["Events"],
)

# Workflow run history and manual runs
api_v1_router.include_router(
    workflows.router,
    prefix="/workflows",
    tags=["Workflows"],
)

# Runs
api_v1_router.include_router(
    runs.router,
    prefix="/runs",
    tags=["Runs"],
)

# Dead letters
api_v1_router.include_router(
    dead_letters.router,
    prefix="/dead-letters",
    tags=["Dead Letters"],
)
