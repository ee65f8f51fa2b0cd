"""
Registre central des routers.
- API v1: orders (approve / decline / holds), payments (webhook d'intake), billing (balayage)
- Health: health_router
"""
from fastapi import FastAPI
from rentals.payments import views as payments_views
from rentals.billing import views as billing_views
from rentals.health.router import router as health_router

def register_routers(app: FastAPI) -> None:
    # API v1
    app.include_router(payments_views.router)
    app.include_router(payments_views.webhook_router)
    app.include_router(billing_views.router)
    # Health & monitoring
    app.include_router(health_router)
