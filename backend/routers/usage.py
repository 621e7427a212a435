"""
Usage statistics for generative calls.
"""

from fastapi import APIRouter, Depends, Query

from dependencies import ServiceContainer, get_services

router = APIRouter(prefix="/api/usage", tags=["Usage"])


@router.get("/stats", summary="Usage Stats")
async def get_usage_stats(services: ServiceContainer = Depends(get_services)):
    """Counts per generation type, success rate and average latency."""
    counter = services.usage_counter
    return {
        **counter.stats(),
        "successRate": counter.success_rate(),
        "averageResponseTimeMs": counter.average_response_time(),
    }


@router.get("/breakdown", summary="Usage Breakdown")
async def get_usage_breakdown(services: ServiceContainer = Depends(get_services)):
    return services.usage_counter.breakdown()


@router.get("/history", summary="Usage History")
async def get_usage_history(
    limit: int = Query(50, ge=1, le=1000),
    services: ServiceContainer = Depends(get_services),
):
    return services.usage_counter.history(limit)


@router.post("/reset", summary="Reset Usage")
async def reset_usage(services: ServiceContainer = Depends(get_services)):
    services.usage_counter.reset()
    return {"success": True}
