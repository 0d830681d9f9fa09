from fastapi import APIRouter

# Admin: revenue analytics
from revenue_rollup.api.v1.admin.analytics import router as analytics_router

api_router = APIRouter()

# --- Admin ---
api_router.include_router(analytics_router)
