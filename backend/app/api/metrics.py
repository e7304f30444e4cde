"""Prometheus text exposition of the gateway's metrics."""

from fastapi import APIRouter, Depends, Response

from app.api.deps import get_registry
from app.monitoring.metrics import channel_views_open
from app.monitoring.registry import registry
from app.services.sessions import ViewRegistry


router = APIRouter(tags=["metrics"])


@router.get("/metrics", response_class=Response)
def export_metrics(views: ViewRegistry = Depends(get_registry)) -> Response:
    channel_views_open.set(len(views))
    return Response(content=registry.render(), media_type="text/plain; version=0.0.4")
