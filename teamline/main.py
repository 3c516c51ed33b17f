import logging

import psycopg2
from dotenv import load_dotenv
from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from teamline import app_context
from teamline.app.errors import ServiceError
from teamline.app.routes.billing import router as billing_router
from teamline.app.routes.messages import router as messages_router
from teamline.config import get_settings
from teamline.middleware_perf import RequestTimingMiddleware

load_dotenv()

logger = logging.getLogger("teamline")

settings = get_settings()


def get_conn():
    return psycopg2.connect(**settings.db)


app_context.configure(get_conn=get_conn)

app = FastAPI(title="Teamline API")

app.add_middleware(RequestTimingMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=list(settings.cors_allow_origins),
    allow_credentials="*" not in settings.cors_allow_origins,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(billing_router)
app.include_router(messages_router)


@app.exception_handler(ServiceError)
async def handle_service_error(request: Request, exc: ServiceError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=dict(exc.payload))


@app.exception_handler(Exception)
async def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"error": "Internal Server Error"},
    )


@app.get("/healthz")
def healthz():
    return {"ok": True}
