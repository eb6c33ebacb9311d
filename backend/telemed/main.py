import logging

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from .config import settings
from .database import init_db
from . import models
from .auth import router as auth_router
from .profile import router as profile_router
from .appointments import router as appointments_router
from .errors import (
    TelemedError,
    request_validation_handler,
    telemed_error_handler,
    unhandled_error_handler,
)
from .models import utcnow
from .rate_limit import limiter, rate_limit_exceeded_handler

logging.basicConfig(level=logging.INFO)

app = FastAPI(title="Telemed API")
app.state.limiter = limiter
app.add_middleware(SlowAPIMiddleware)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.BACKEND_CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE"],
    allow_headers=["*"],
)

app.add_exception_handler(TelemedError, telemed_error_handler)
app.add_exception_handler(RequestValidationError, request_validation_handler)
app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)
app.add_exception_handler(Exception, unhandled_error_handler)


@app.on_event("startup")
def on_startup():
    init_db()


# Include API routers
app.include_router(auth_router, prefix="/auth", tags=["auth"])
app.include_router(profile_router, tags=["users & doctors"])
app.include_router(appointments_router, tags=["slots & appointments"])


# Health check
@app.get("/health")
def health_check():
    return {"ok": True, "ts": utcnow().isoformat() + "Z"}
