import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from bookpay.config import configure_logging, get_settings
from bookpay.database import create_db_and_tables
from bookpay.errors import register_exception_handlers
from bookpay.routes import (
    admin_notifications,
    admin_purchases,
    bot_gateway,
    health,
    payment_requests,
    purchases,
    user_library,
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    configure_logging(settings.log_level)

    # Run DB creation ONLY in local
    if settings.env == "local":
        create_db_and_tables()

    if not settings.telegram_bot_secret:
        logger.warning("telegram_bot_secret is not set; bot and webhook routes will answer 503")
    yield


app = FastAPI(title="Bookstore Purchases API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:5173",
        "http://localhost:3000",
        "http://127.0.0.1:5173",
        "http://127.0.0.1:8000",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)

app.include_router(purchases.router, prefix="/purchases", tags=["Purchases"])
app.include_router(user_library.router, prefix="/library", tags=["Library"])
app.include_router(payment_requests.router, prefix="/payment-requests", tags=["Payment Requests"])
app.include_router(bot_gateway.router, prefix="/bot/purchases", tags=["Telegram Bot"])
app.include_router(bot_gateway.webhook_router, prefix="/webhooks", tags=["Webhooks"])
app.include_router(admin_purchases.router, prefix="/admin", tags=["Admin Purchases"])
app.include_router(payment_requests.admin_router, prefix="/admin/payment-requests", tags=["Admin Payment Requests"])
app.include_router(admin_notifications.router, prefix="/admin/notifications", tags=["Admin Notifications"])
app.include_router(health.router, prefix="/health", tags=["Health"])


@app.get("/")
def root():
    return {"message": "Bookstore Purchases API is running"}
