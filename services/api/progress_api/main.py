# Progress & Reward API entry point
import logging
import sys
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address

from .errors import ProgressError
from .settings import settings
from .routers.ready import router as ready_router
from .routers.progress import router as progress_router
from .routers.gamification import router as gamification_router

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[logging.StreamHandler(sys.stdout)]
)
logger = logging.getLogger("progress_api")

# Rate limiter (per-IP)
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[settings.rate_limit_default],
    enabled=settings.rate_limit_enabled,
)

app = FastAPI(title="Progress & Reward API", version="0.1.0")
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
app.add_middleware(SlowAPIMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(ProgressError)
async def progress_error_handler(request: Request, exc: ProgressError):
    logger.info(f"{request.method} {request.url.path} -> {exc.error_code}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_response())


app.include_router(ready_router, prefix="/api", tags=["ready"])
app.include_router(progress_router, prefix="/api")
app.include_router(gamification_router, prefix="/api")
