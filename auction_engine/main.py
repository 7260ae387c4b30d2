from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from auction_engine import conf
from auction_engine.clients.mail import MailClient
from auction_engine.engine import AuctionEngine
from auction_engine.models.store.base import AuctionStore
from auction_engine.models.store.memory import MemoryAuctionStore
from auction_engine.notifications import AuctionMailer, BroadcastHub, FanoutNotifier
from auction_engine.routes.base import router
from auction_engine.scheduler import SweepScheduler
from auction_engine.utils import log

logger = log.get_logger(__name__)


def build_store() -> AuctionStore:
    backend = conf.get_store_backend()
    if backend == "couchbase":
        from auction_engine.models.store.couchbase import CouchbaseAuctionStore

        return CouchbaseAuctionStore()
    logger.warning("Using the in-memory store; auctions are lost on restart (set STORE_BACKEND=couchbase)")
    return MemoryAuctionStore()


def build_engine(store: AuctionStore, hub: BroadcastHub) -> AuctionEngine:
    mail_conf = conf.get_mail_conf()
    if not mail_conf.relay_url:
        logger.warning("MAIL_RELAY_URL not set, auction emails will only be logged")
    mailer = AuctionMailer(
        store,
        MailClient(mail_conf.relay_url, mail_conf.sender, api_key=mail_conf.api_key),
        frontend_url=mail_conf.frontend_url,
    )
    sched_conf = conf.get_scheduler_conf()
    return AuctionEngine(
        store,
        notifier=FanoutNotifier([hub, mailer]),
        max_retries=conf.get_cas_max_retries(),
        ending_soon_window_start=sched_conf.ending_soon_window_start,
        ending_soon_window_end=sched_conf.ending_soon_window_end,
    )


def create_app(
    engine: Optional[AuctionEngine] = None,
    hub: Optional[BroadcastHub] = None,
    start_scheduler: Optional[bool] = None,
) -> FastAPI:
    """Build the API app. Pass *engine* and *hub* to run against a prepared store."""
    log.init(conf.get_log_level(), conf.get_environment())
    if not conf.validate():
        raise ValueError("Invalid configuration.")

    hub = hub or BroadcastHub()
    if engine is None:
        engine = build_engine(build_store(), hub)
    sched_conf = conf.get_scheduler_conf()
    if start_scheduler is None:
        start_scheduler = sched_conf.enabled

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        connect = getattr(engine.store, "connect", None)
        if connect is not None:
            await connect()

        scheduler = None
        if start_scheduler:
            scheduler = SweepScheduler(engine, sched_conf)
            scheduler.start()
        else:
            logger.warning("Auction scheduler is disabled (set SCHEDULER_ENABLED to enable)")

        yield

        if scheduler:
            scheduler.shutdown()
        await engine.drain()
        await engine.store.close()

    app = FastAPI(
        title="Auction Engine API",
        version="0.1.0",
        docs_url="/docs",
        lifespan=lifespan,
        debug=conf.get_http_expose_errors(),
    )
    app.state.engine = engine
    app.state.hub = hub
    app.state.internal_api_key = conf.get_internal_api_key()

    app.include_router(router)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/health", tags=["health"])
    async def route_health():
        return {"status": "ok"}

    return app


if __name__ == "__main__":
    http_conf = conf.get_http_conf()
    logger.info(f"Starting API on port {http_conf.port}")
    uvicorn.run(
        "auction_engine.main:create_app",
        factory=True,
        host=http_conf.host,
        port=http_conf.port,
        reload=http_conf.autoreload,
        log_level="info",
        log_config=None,
    )
