import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from marketplace.api.v1.routes_cart import router as cart_router
from marketplace.api.v1.routes_checkout import router as checkout_router
from marketplace.api.v1.routes_orders import router as orders_router
from marketplace.api.v1.routes_payouts import router as payouts_router
from marketplace.api.v1.routes_webhooks import router as webhooks_router
from marketplace.core.config import settings
from marketplace.core.errors import BusinessError, GatewayError, NotFoundError
from marketplace.core.logging import configure_logging

configure_logging(settings.LOG_LEVEL, settings.LOG_JSON)
logger = structlog.get_logger(__name__)

app = FastAPI(title="Marketplace Core")

app.include_router(cart_router)
app.include_router(checkout_router)
app.include_router(orders_router)
app.include_router(webhooks_router)
app.include_router(payouts_router)


@app.exception_handler(NotFoundError)
async def not_found_handler(request: Request, exc: NotFoundError):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(BusinessError)
async def business_error_handler(request: Request, exc: BusinessError):
    logger.info("Request rejected", path=request.url.path, error=str(exc))
    return JSONResponse(status_code=409, content={"detail": str(exc)})


@app.exception_handler(GatewayError)
async def gateway_error_handler(request: Request, exc: GatewayError):
    logger.error("Payment gateway error", path=request.url.path, error=str(exc), status_code=exc.status_code)
    return JSONResponse(status_code=502, content={"detail": str(exc)})


@app.get("/health")
async def health():
    return {"status": "ok"}
