import logging
from contextlib import asynccontextmanager
from zoneinfo import ZoneInfo

from fastapi import FastAPI
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from app.api.routes import external_tickets, internal_tickets, maintenance, ping
from app.core.config import Settings, get_settings
from app.core.logging import configure_logging, init_tracer, shutdown_tracer
from app.notifications import WhatsAppNotifier, ZapiCredentials
from app.services.directory import ClientRepository, UserRepository
from app.services.system_logs import SystemLogRepository
from app.tickets.events import TicketEventBroker
from app.tickets.preventive import PreventiveMaintenanceService
from app.tickets.repository import ExternalTicketRepository, InternalTicketRepository
from app.tickets.service import ExternalTicketService, InternalTicketService

logger = logging.getLogger(__name__)


def _to_asyncpg_dsn(dsn: str) -> str:
    """Ensure the SQLAlchemy DSN uses the asyncpg driver."""

    if dsn.startswith("postgresql+asyncpg://"):
        return dsn
    if dsn.startswith("postgresql://"):
        return "postgresql+asyncpg://" + dsn[len("postgresql://") :]
    return dsn


def build_notifier(settings: Settings, system_logs: SystemLogRepository) -> WhatsAppNotifier:
    credentials = ZapiCredentials(
        instance_id=settings.zapi_instance_id,
        instance_token=settings.zapi_instance_token,
        client_token=settings.zapi_client_token,
        base_url=settings.zapi_base_url,
    )
    return WhatsAppNotifier(credentials, system_logs=system_logs, timeout=settings.notification_timeout)


@asynccontextmanager
async def lifespan(app: FastAPI):  # pragma: no cover - executed by framework
    settings = get_settings()
    app.state.logger = configure_logging(settings)
    tracer_provider = init_tracer(settings)
    app.state.tracer_provider = tracer_provider

    broker = TicketEventBroker(queue_size=settings.event_queue_size)
    app.state.ticket_events = broker
    app.state.settings = settings

    db_engine = create_async_engine(
        _to_asyncpg_dsn(settings.postgres_dsn),
        echo=settings.database_echo,
        future=True,
    )
    try:
        session_factory = async_sessionmaker(db_engine, expire_on_commit=False)
        external_repository = ExternalTicketRepository(session_factory, engine=db_engine)
        await external_repository.ensure_schema()

        users = UserRepository(session_factory)
        clients = ClientRepository(session_factory)
        system_logs = SystemLogRepository(session_factory)

        app.state.users = users
        app.state.external_ticket_service = ExternalTicketService(
            repository=external_repository,
            users=users,
            clients=clients,
            notifier=build_notifier(settings, system_logs),
            system_logs=system_logs,
            events=broker,
            brand=settings.brand_name,
            local_timezone=ZoneInfo(settings.local_timezone),
        )
        app.state.internal_ticket_service = InternalTicketService(
            repository=InternalTicketRepository(session_factory, engine=db_engine),
            users=users,
            system_logs=system_logs,
            events=broker,
        )
        app.state.preventive_service = PreventiveMaintenanceService(
            tickets=external_repository,
            clients=clients,
            events=broker,
        )
        logger.info("%s started (%s)", settings.app_name, settings.environment)
        yield
    finally:
        await db_engine.dispose()
        shutdown_tracer(tracer_provider)


def create_app() -> FastAPI:
    settings = get_settings()
    app = FastAPI(title=settings.app_name, lifespan=lifespan)
    app.include_router(ping.router)
    app.include_router(external_tickets.router)
    app.include_router(internal_tickets.router)
    app.include_router(maintenance.router)
    return app


app = create_app()
