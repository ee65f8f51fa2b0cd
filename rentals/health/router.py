from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from rentals.health.service import health_gateway_info
from rentals.utils.rate_limit import rate_limit_health_info

router = APIRouter(prefix="/health", tags=["Health"])

@router.get("")
def health_root():
    return {"ok": True}

@router.get("/gateway")
def health_gateway(request: Request):
    info = health_gateway_info()
    info["rate_limit"] = rate_limit_health_info(request)
    return JSONResponse(info)
