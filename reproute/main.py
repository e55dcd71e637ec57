from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from .errors import (InvalidTransition, NoPartnersForDestination, NotFound, RepRouteError,
                     StoreUnavailable, ValidationError)
from .routes.logistics import router as logistics_router
from .routes.orders import router as orders_router
from .utils.logging import logger
from .utils.security import warn_if_open

app = FastAPI(title="RepRoute",
              description="Reputation scoring and logistics partner allocation",
    version="0.1.0",
    docs_url="/docs",          # Swagger UI
    redoc_url="/redoc",        # ReDoc
    openapi_url="/openapi.json")

app.include_router(orders_router)
app.include_router(logistics_router)

warn_if_open()

STATUS_BY_ERROR = (
    (ValidationError, 400),
    (NotFound, 404),
    (InvalidTransition, 409),
    (NoPartnersForDestination, 422),
    (StoreUnavailable, 503),
)


@app.exception_handler(RepRouteError)
async def handle_domain_error(request: Request, exc: RepRouteError):
    for cls, code in STATUS_BY_ERROR:
        if isinstance(exc, cls):
            break
    else:
        code = 500
    if code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=code, content={"ok": False, "error": type(exc).__name__, "detail": str(exc)})


@app.get("/health")
def health():
    return {"ok": True}
