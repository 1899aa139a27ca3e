from fastapi import APIRouter, Depends
from fastapi.responses import Response

from ..config import API_VERSION, ENVIRONMENT
from ..context import ServiceContext
from ..deps import get_context
from ..services.prometheus_metrics import prometheus_metrics

router = APIRouter()

@router.get("/health")
async def health(context: ServiceContext = Depends(get_context)):
    return {
        "status": "ok",
        "service": "integrations-api",
        "version": "v1",
        "change_feed_subscribers": context.feed.subscriber_count,
        "dispatch_relay": context.relay is not None,
    }

@router.get("/version")
async def version():
    return {"version": API_VERSION, "environment": ENVIRONMENT}

@router.get("/metrics/prometheus")
async def metrics_prometheus():
    return Response(content=prometheus_metrics.get_metrics(), media_type=prometheus_metrics.get_content_type())
