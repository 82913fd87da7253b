import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .core.config import settings
from .core.logging import configure_logging
from .errors import RecurringPaymentError
from .routers import router

configure_logging(settings.LOG_LEVEL)
logger = logging.getLogger("kakeibo.api")

app = FastAPI(title=settings.APP_NAME, version="0.1.0")

# CORS (프론트엔드 연결 준비)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(RecurringPaymentError)
def recurring_payment_error_handler(request: Request, exc: RecurringPaymentError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    else:
        logger.warning("%s %s rejected (%s): %s", request.method, request.url.path, exc.status_code, exc)
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.messages[0] if exc.messages else "", "messages": exc.messages},
    )


@app.get("/health")
def health():
    return {"status": "ok"}


app.include_router(router, prefix="/api")
