"""
Factory d’application pour les entrypoints (ex: rentals.asgi).
Ordonne les étapes d’initialisation de manière lisible et testable.
"""
from fastapi import FastAPI
from .lifespan import lifespan
from .middlewares import register_basic_middlewares
from .exceptions import register_exception_handlers
from .routers import register_routers

def create_app() -> FastAPI:
    """
    Construit l’app FastAPI avec le lifespan et enregistre:
      - middlewares de base (CORS, TrustedHost, proxy)
      - gestionnaires d’exceptions (PaymentFlowError, HTTPException)
      - tous les routers (orders, payments, billing, health)
    """
    app = FastAPI(title="Rentals Orders API", lifespan=lifespan)
    register_basic_middlewares(app)
    register_exception_handlers(app)
    register_routers(app)
    return app
