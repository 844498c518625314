# marketplace_analytics/api/v1/router.py
from fastapi import APIRouter

from marketplace_analytics.api.v1.endpoints import admin_analytics, events, insights, metrics

api_router_v1 = APIRouter()

api_router_v1.include_router(events.router, prefix="/events", tags=["Events"])
api_router_v1.include_router(metrics.router, tags=["Metrics"])
api_router_v1.include_router(insights.router, tags=["Insights"])
api_router_v1.include_router(admin_analytics.router)
