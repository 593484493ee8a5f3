"""FastAPI application entry point."""
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from eventpass.config import settings
from eventpass.database import Base, engine

# Import routers
from eventpass.routers import users, events, registrations, payments, tickets

# Import all models so Base.metadata knows about them
from eventpass.models.user import User                  # noqa: F401
from eventpass.models.event import Event                # noqa: F401
from eventpass.models.ticket import Ticket              # noqa: F401
from eventpass.models.payment import PaymentSession     # noqa: F401

logging.basicConfig(
    level=settings.LOG_LEVEL.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = FastAPI(
    title="EventPass",
    description="Event registration, payments and QR check-in for recurring and one-off events",
    version="0.1.0",
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS.split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Register routers
app.include_router(users.router, prefix="/api/users", tags=["Users"])
app.include_router(events.router, prefix="/api/events", tags=["Events"])
app.include_router(registrations.router, prefix="/api/registrations", tags=["Registrations"])
app.include_router(payments.router, prefix="/api/payments", tags=["Payments"])
app.include_router(tickets.router, prefix="/api/tickets", tags=["Tickets"])


@app.on_event("startup")
def on_startup():
    """Create database tables on startup (for SQLite dev mode)."""
    if settings.DATABASE_URL.startswith("sqlite"):
        Base.metadata.create_all(bind=engine)


@app.get("/api/health")
def health_check():
    return {"status": "ok"}
