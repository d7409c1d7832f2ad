from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from redis.asyncio import Redis

from invite_markets.api.listings import router as listings_router
from invite_markets.api.purchase import router as purchase_router
from invite_markets.api.sales import router as sales_router
from invite_markets.chains import get_chain
from invite_markets.config import settings
from invite_markets.database import Database
from invite_markets.errors import PaymentFailed
from invite_markets.integrations.discord import DiscordNotifier
from invite_markets.integrations.evm_rpc import EvmRpcClient
from invite_markets.integrations.x402_facilitator import (
    PAYMENT_RESPONSE_HEADER,
    FacilitatorSettlementAdapter,
)
from invite_markets.middleware.rate_limit import RateLimitMiddleware
from invite_markets.middleware.security import SecurityHeadersMiddleware
from invite_markets.services.authenticity import OwnershipVerifier

# Configure structlog
structlog.configure(
    processors=[
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        structlog.processors.TimeStamper(fmt="iso"),
        (
            structlog.dev.ConsoleRenderer()
            if settings.APP_ENV == "development"
            else structlog.processors.JSONRenderer()
        ),
    ],
    wrapper_class=structlog.make_filtering_bound_logger(0),
    context_class=dict,
    logger_factory=structlog.PrintLoggerFactory(),
    cache_logger_on_first_use=True,
)

log = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    chain = get_chain(settings.chain_id)
    log.info("starting_up", env=settings.APP_ENV, chain_id=chain.chain_id, network=chain.network)

    database = Database(settings.DATABASE_URL, pool_pre_ping=True)
    database.connect()
    app.state.database = database

    redis = Redis.from_url(settings.REDIS_URL, decode_responses=True)
    try:
        await redis.ping()
        log.info("redis_connected", url=settings.REDIS_URL)
    except Exception as e:
        log.warning("redis_connection_failed", error=str(e))
    app.state.redis = redis

    app.state.settlement = FacilitatorSettlementAdapter()
    app.state.verifier = OwnershipVerifier(rpc=EvmRpcClient())
    app.state.notifier = DiscordNotifier()
    if not settings.RPC_URL:
        log.warning("rpc_url_not_configured", detail="smart-wallet signatures will be rejected")

    yield

    # Shutdown
    log.info("shutting_down")
    await redis.close()
    await database.dispose()


app = FastAPI(
    title="Invite Markets",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"] if settings.APP_ENV == "development" else [settings.PUBLIC_BASE_URL],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=[PAYMENT_RESPONSE_HEADER],
)

# Security headers (outermost -- runs last on request, first on response)
app.add_middleware(SecurityHeadersMiddleware)

# Rate limiting (runs after security headers are already queued)
app.add_middleware(RateLimitMiddleware)


@app.exception_handler(PaymentFailed)
async def payment_failed_handler(request: Request, exc: PaymentFailed):
    """Forward the facilitator's status, body and headers untouched."""
    return JSONResponse(status_code=exc.status_code, content=exc.body, headers=exc.headers)


app.include_router(purchase_router)
app.include_router(listings_router)
app.include_router(sales_router)


@app.get("/health")
async def health_check():
    return {"status": "healthy", "chain_id": settings.chain_id}
