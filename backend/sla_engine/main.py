import contextlib
import logging

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from sla_engine.api.routes import business_hours, scheduler, sla, sla_policies
from sla_engine.config import settings
from sla_engine.database import async_session
from sla_engine.exceptions import InstanceNotFound, InvalidPolicy, PolicyNotFound, SlaError, TicketNotFound
from sla_engine.services.notification_service import build_notifier
from sla_engine.tasks.sla_scheduler import SlaScheduler

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)


@contextlib.asynccontextmanager
async def lifespan(app: FastAPI):
    if settings.jwt_secret == "change-me-in-production":
        logging.warning(
            "JWT_SECRET is set to the default value. "
            "Set a strong secret in your .env file."
        )
    notifier = build_notifier()
    sla_scheduler = SlaScheduler(async_session, notifier)
    app.state.sla_scheduler = sla_scheduler
    sla_scheduler.start()
    try:
        yield
    finally:
        await sla_scheduler.stop()
        await notifier.close()


def _error_response(status_code: int, exc: SlaError) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"detail": exc.message, **exc.details})


def create_app() -> FastAPI:
    app = FastAPI(title="Helpdesk SLA Engine", version="0.1.0", lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(InvalidPolicy)
    async def invalid_policy_handler(request: Request, exc: InvalidPolicy):
        return _error_response(422, exc)

    @app.exception_handler(PolicyNotFound)
    @app.exception_handler(InstanceNotFound)
    @app.exception_handler(TicketNotFound)
    async def not_found_handler(request: Request, exc: SlaError):
        return _error_response(status.HTTP_404_NOT_FOUND, exc)

    @app.get("/api/v1/health")
    async def health_check():
        return {"status": "ok"}

    app.include_router(sla_policies.router, prefix="/api/v1/sla-policies", tags=["sla-policies"])
    app.include_router(sla.router, prefix="/api/v1/sla", tags=["sla"])
    app.include_router(scheduler.router, prefix="/api/v1/sla/scheduler", tags=["sla-scheduler"])
    app.include_router(business_hours.router, prefix="/api/v1/business-hours", tags=["business-hours"])

    return app


app = create_app()
