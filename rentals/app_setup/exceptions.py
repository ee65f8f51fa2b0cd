"""
Gestionnaires d’exceptions utilisés par la factory.
- PaymentFlowError: JSON {"error": kind, "detail": message, ...} avec son code HTTP
  (400 jeton manquant, 401 jeton invalide, 402 carte refusée, 409 conflit, 503 passerelle).
- HTTPException: forme FastAPI {"detail": ...} conservée pour les clients programmatiques.
"""
import logging
from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse

from rentals.errors import PaymentFlowError

logger = logging.getLogger(__name__)

def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(PaymentFlowError)
    async def payment_flow_error(request: Request, exc: PaymentFlowError):
        if exc.status_code >= 500:
            logger.error("%s %s -> %s %s", request.method, request.url.path, exc.kind, exc.message)
        else:
            logger.info("%s %s -> %s %s", request.method, request.url.path, exc.kind, exc.message)
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(HTTPException)
    async def http_exception(request: Request, exc: HTTPException):
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail}, headers=getattr(exc, "headers", None))
