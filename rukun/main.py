import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .api import auth, dues, groups, payments, settings as settings_api, users
from .config import Base, engine, settings
from .core.errors import register_exception_handlers
from .core.logging import configure_logging
from .core.request_context import request_id_middleware
from .core.security import SecurityHeadersMiddleware, log_security_warnings

# Import the full models module so every table registers with Base metadata.
from .models import models as _all_models  # noqa: F401

configure_logging(settings.log_level, settings.log_format)
logger = logging.getLogger(__name__)

app = FastAPI(title="Rukun Community - RW/RT dues")

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_allow_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(SecurityHeadersMiddleware)
app.middleware("http")(request_id_middleware)
register_exception_handlers(app)


@app.on_event("startup")
def startup() -> None:
    # In dev we make sure tables exist.
    Base.metadata.create_all(bind=engine)
    log_security_warnings(settings.jwt_secret, settings.stripe_api_key, settings.stripe_webhook_secret)
    logger.info("Rukun API started (reference timezone %s)", settings.reference_timezone)


@app.get("/health", tags=["system"])
def health() -> dict:
    return {"status": "ok"}


app.include_router(auth.router, prefix="/auth", tags=["auth"])
app.include_router(groups.router, prefix="/groups", tags=["groups"])
app.include_router(users.router, prefix="/users", tags=["users"])
app.include_router(dues.router, prefix="/dues", tags=["dues"])
app.include_router(payments.router, prefix="/payments", tags=["payments"])
app.include_router(settings_api.router, prefix="/settings", tags=["settings"])
