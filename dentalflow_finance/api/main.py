"""FastAPI application factory"""

from fastapi import FastAPI
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST
from starlette.responses import Response

from dentalflow_finance.api.middleware import RequestIDMiddleware, MetricsMiddleware
from dentalflow_finance.api.v1 import cash_flow, cost_of_capital, loans, valuation
from dentalflow_finance.infrastructure.observability.logging import setup_logging
from dentalflow_finance.config import settings

# Setup structured logging
setup_logging(settings.log_level, settings.service_name)


def create_app() -> FastAPI:
    """Create and configure FastAPI application"""
    app = FastAPI(
        title="DentalFlow Finance",
        description="Cash flow, loan detection, cost of capital and valuation for dental practices",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
    )

    # Add middleware (order matters: last added = first executed)
    app.add_middleware(MetricsMiddleware)
    app.add_middleware(RequestIDMiddleware)

    # Health check endpoint
    @app.get("/health")
    def health_check():
        return {"status": "ok", "service": settings.service_name}

    # Prometheus metrics endpoint
    @app.get("/metrics")
    def metrics():
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    # Register API routers
    app.include_router(cash_flow.router, prefix="/v1", tags=["cash-flow"])
    app.include_router(loans.router, prefix="/v1", tags=["loans"])
    app.include_router(cost_of_capital.router, prefix="/v1", tags=["cost-of-capital"])
    app.include_router(valuation.router, prefix="/v1", tags=["valuation"])

    return app


app = create_app()
