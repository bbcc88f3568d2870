"""Health check endpoints for monitoring and deployment verification."""

import time

from fastapi import APIRouter, Response, status

from src.core.config import get_settings
from src.core.supabase import check_database_connection
from src.schemas.common import CheckResult, HealthResponse, HealthStatus, ReadinessResponse

router = APIRouter(tags=["health"])


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Liveness check",
    description="Basic health check to verify the service is running. Used for liveness probes.",
)
async def health_check() -> HealthResponse:
    """Return basic health status.

    This endpoint should always return 200 if the service is running.
    It does not check external dependencies.
    """
    return HealthResponse(status=HealthStatus.HEALTHY)


@router.get(
    "/health/ready",
    response_model=ReadinessResponse,
    responses={
        200: {"description": "All dependencies healthy"},
        503: {"description": "One or more dependencies unhealthy"},
    },
    summary="Readiness check",
    description="Check if the order store and payment providers are available. Used for readiness probes.",
)
async def readiness_check(response: Response) -> ReadinessResponse:
    """Check readiness of the store and payment provider configuration.

    The database is only probed when the Supabase backend is configured.
    Missing provider credentials mark the service unready since no payment
    could be taken.

    Args:
        response: FastAPI response object for setting status code.

    Returns:
        ReadinessResponse: Status of all dependency checks.
    """
    settings = get_settings()
    checks: list[CheckResult] = []

    if settings.storage_backend == "supabase":
        start_time = time.perf_counter()
        db_result = await check_database_connection()
        latency_ms = (time.perf_counter() - start_time) * 1000
        checks.append(
            CheckResult(
                name="database",
                healthy=db_result["healthy"],
                latency_ms=round(latency_ms, 2),
                error=db_result.get("error"),
            )
        )
    else:
        checks.append(CheckResult(name="database", healthy=True, error=None))

    checks.append(
        CheckResult(
            name="promptpay",
            healthy=settings.is_promptpay_configured,
            error=None if settings.is_promptpay_configured else "PromptPay credentials missing",
        )
    )
    checks.append(
        CheckResult(
            name="card_gateway",
            healthy=settings.is_card_gateway_configured,
            error=None if settings.is_card_gateway_configured else "Card gateway credentials missing",
        )
    )

    all_healthy = all(check.healthy for check in checks)
    overall_status = HealthStatus.HEALTHY if all_healthy else HealthStatus.UNHEALTHY

    if not all_healthy:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE

    return ReadinessResponse(status=overall_status, checks=checks)
