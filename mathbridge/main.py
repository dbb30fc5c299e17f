import asyncio
import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from . import models  # noqa: F401
from .config import NOTIFICATION_TOPIC, REDIS_URL
from .database import Base, engine
from .domain.contracts.router import router as contracts_router
from .domain.notifications.dispatcher import BroadcastNotificationDispatcher, NotificationDispatcher
from .domain.notifications.pubsub import NotificationSubscriber, create_redis_client
from .domain.notifications.router import router as notifications_router
from .domain.payments.router import payos_router, sepay_router
from .domain.reschedule.router import router as reschedule_router
from .domain.sessions.router import router as sessions_router
from .domain.wallet.router import router as wallet_router
from .exceptions import MathBridgeError

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

# Reduce verbosity of third-party libraries
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)


def build_dispatcher(redis_url=None):
    """Pick the dispatcher variant once: pub/sub fan-out when Redis is configured"""
    if not redis_url:
        logger.info("📣 REDIS_URL not set - notifications delivered to this instance only")
        return NotificationDispatcher(), None

    redis_client = create_redis_client(redis_url)
    logger.info(f"📣 Cross-instance notifications via Redis channel '{NOTIFICATION_TOPIC}'")
    return BroadcastNotificationDispatcher(redis_client, NOTIFICATION_TOPIC), redis_client


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Application starting up...")
    try:
        Base.metadata.create_all(bind=engine, checkfirst=True)
        logger.info("Database tables created successfully")
    except Exception as e:
        # Ignore "already exists" errors from race conditions between workers
        error_msg = str(e)
        if "already exists" in error_msg or "duplicate key" in error_msg:
            logger.info("Database tables already exist (created by another worker)")
        else:
            logger.error(f"Failed to create database tables: {e}")

    dispatcher, redis_client = build_dispatcher(REDIS_URL)
    app.state.notification_dispatcher = dispatcher

    subscriber_task = None
    if redis_client is not None:
        subscriber = NotificationSubscriber(redis_client, dispatcher, NOTIFICATION_TOPIC)
        subscriber_task = asyncio.create_task(subscriber.listen())

    yield

    logger.info("Application shutting down...")
    if subscriber_task is not None:
        subscriber_task.cancel()
        try:
            await subscriber_task
        except asyncio.CancelledError:
            pass
        except Exception as e:
            logger.error(f"Notification subscriber stopped with error: {e}")
    await dispatcher.close_all()
    if redis_client is not None:
        await redis_client.aclose()


app = FastAPI(title="MathBridge API", version="1.0.0", lifespan=lifespan)


@app.exception_handler(MathBridgeError)
async def domain_exception_handler(request: Request, exc: MathBridgeError):
    """Map domain errors to their HTTP status"""
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} - {exc.message}")
    else:
        logger.info(f"{request.method} {request.url.path} - {exc.status_code} {exc.message}")
    content = {"detail": exc.message}
    if exc.detail:
        content.update(exc.detail)
    return JSONResponse(status_code=exc.status_code, content=content)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """
    Convert 422 validation errors from HTTPBearer to 401 authentication errors
    when the issue is with the Authorization header
    """
    for error in exc.errors():
        if error.get("loc") and "authorization" in str(error.get("loc")).lower():
            logger.warning(
                f"Authentication failed for {request.url.path}: Missing or invalid Authorization header"
            )
            return JSONResponse(
                status_code=401,
                content={
                    "detail": "Not authenticated. Please provide a valid Bearer token in the Authorization header."
                },
            )

    logger.warning(f"Validation error for {request.url.path}: {exc.errors()}")
    return JSONResponse(status_code=422, content={"detail": jsonable_errors(exc)})


def jsonable_errors(exc: RequestValidationError) -> list:
    # ctx may hold exception instances that JSONResponse cannot encode
    return [{k: v for k, v in error.items() if k != "ctx"} for error in exc.errors()]


@app.middleware("http")
async def log_requests(request: Request, call_next):
    try:
        response = await call_next(request)
        return response
    except Exception as e:
        logger.error(f"{request.method} {request.url.path} - Error: {str(e)}")
        raise


# CORS Configuration
ALLOWED_ORIGINS = os.getenv(
    "ALLOWED_ORIGINS",
    "http://localhost:5173,http://localhost:3000",
).split(",")

logger.info(f"CORS allowed origins: {ALLOWED_ORIGINS}")

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS", "PATCH"],
    allow_headers=["*"],
)

# Routes
app.include_router(wallet_router)
app.include_router(sepay_router)
app.include_router(payos_router)
app.include_router(contracts_router)
app.include_router(sessions_router)
app.include_router(reschedule_router)
app.include_router(notifications_router)


@app.get("/")
def root():
    return {"message": "MathBridge API is running"}


@app.get("/health")
def health():
    return {"status": "healthy"}


@app.get("/health/notifications")
def notifications_health(request: Request):
    """Live stream registry for monitoring"""
    dispatcher = request.app.state.notification_dispatcher
    return {
        "status": "healthy",
        "broadcasts": dispatcher.broadcasts,
        "activeConnections": dispatcher.active_connection_count(),
    }
