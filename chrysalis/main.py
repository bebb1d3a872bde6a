import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .database import init_db
from .errors import InvalidOperation, NotFound, StoreUnavailable
from .routers.chapters import router as chapters_router
from .routes_shared import NOTIFIER
from .settings.config import settings

logging.basicConfig(level=getattr(logging, settings.LOG_LEVEL, logging.INFO))
logger = logging.getLogger(__name__)

app = FastAPI(title="Chrysalis")

# Enable CORS if needed
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Update for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ----------------------
# Route Includes
# ----------------------
app.include_router(chapters_router, tags=["chapters"])


# -----------------------------------------------------
# Core errors -> HTTP
# -----------------------------------------------------
@app.exception_handler(NotFound)
async def _not_found_handler(request: Request, exc: NotFound):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(InvalidOperation)
async def _invalid_operation_handler(request: Request, exc: InvalidOperation):
    return JSONResponse(status_code=409, content={"detail": str(exc)})


@app.exception_handler(StoreUnavailable)
async def _store_unavailable_handler(request: Request, exc: StoreUnavailable):
    logger.error("Store unavailable on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=503, content={"detail": "Document store unavailable"})


@app.on_event("startup")
async def on_startup():
    await init_db()


@app.on_event("shutdown")
async def on_shutdown():
    await NOTIFIER.aclose()
