"""
FastAPI application for the grouping service.
"""
import os

# Load environment variables from local .env before other imports that read os.getenv
from pathlib import Path

from dotenv import load_dotenv

_ENV_PATH = Path(__file__).resolve().parent / '.env'
if _ENV_PATH.exists():
    load_dotenv(dotenv_path=_ENV_PATH, override=False)

import contextvars
import logging
import time
import uuid
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from .logging_config import configure_logging
from .routers import grouping
from .services.grouping.errors import CapacityError, GroupingError
from .settings import get_settings

# Context variables for request-scoped logging
_ctx_request_id: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar("request_id", default=None)
_ctx_client_ip: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar("client_ip", default=None)

# Attach request context to every LogRecord created while a request is handled.
_original_factory = logging.getLogRecordFactory()


def _record_factory(*args, **kwargs):
    record = _original_factory(*args, **kwargs)
    rid = _ctx_request_id.get()
    cip = _ctx_client_ip.get()
    if rid is not None:
        record.request_id = rid
    if cip is not None:
        record.client_ip = cip
    return record


logging.setLogRecordFactory(_record_factory)

configure_logging()
settings = get_settings()

app = FastAPI(
    title=settings.app_name,
    debug=settings.debug,
    version="1.0.0",
    root_path=os.getenv('BACKEND_ROOT_PATH', ''),
    docs_url=None if os.getenv('DISABLE_DOCS', '0') == '1' else '/docs',
    redoc_url=None if os.getenv('DISABLE_DOCS', '0') == '1' else '/redoc',
    openapi_url=None if os.getenv('DISABLE_DOCS', '0') == '1' else '/openapi.json',
    redirect_slashes=False,
)


######## Structured Logging & Request ID Middleware ########
class RequestIDMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get('X-Request-ID', str(uuid.uuid4()))
        xff = request.headers.get('X-Forwarded-For')
        if xff:
            client_ip = xff.split(',')[0].strip()
        else:
            # request.client is None in some test transports
            client = getattr(request, 'client', None)
            client_ip = client.host if client else None
        request.state.request_id = request_id
        request.state.client_ip = client_ip
        _ctx_request_id.set(request_id)
        _ctx_client_ip.set(client_ip)
        start = time.time()
        logger = logging.getLogger('request')
        logger.info('request.start method=%s path=%s', request.method, request.url.path)
        try:
            response = await call_next(request)
        except Exception:
            logger.exception('request.error')
            raise
        duration_ms = int((time.time() - start) * 1000)
        response.headers['X-Request-ID'] = request_id
        logger.info('request.end status=%s dur_ms=%s', response.status_code, duration_ms)
        return response


app.add_middleware(RequestIDMiddleware)


######## Global Exception Handlers ########

@app.exception_handler(GroupingError)
async def grouping_exception_handler(request: Request, exc: GroupingError):
    # an unsatisfiable request (too little capacity) is well-formed but unprocessable
    status_code = 422 if isinstance(exc, CapacityError) else 400
    logging.getLogger('groupsmith').info('grouping.request rejected kind=%s status=%d', exc.kind, status_code)
    return JSONResponse(status_code=status_code, content={
        'error': 'capacity_error' if status_code == 422 else 'input_error',
        **exc.to_dict(),
        'request_id': getattr(request.state, 'request_id', None),
    })


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(status_code=422, content={
        'error': 'validation_error',
        'detail': exc.errors(),
        'request_id': getattr(request.state, 'request_id', None),
    })


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logging.getLogger('groupsmith').exception('unhandled exception rid=%s', getattr(request.state, 'request_id', None))
    return JSONResponse(status_code=500, content={
        'error': 'internal_server_error',
        'detail': 'An unexpected error occurred',
        'request_id': getattr(request.state, 'request_id', None),
    })


# Browsers reject wildcard origins when allow_credentials is true.
origins = settings.origins or ["*"]
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=settings.cors_allow_credentials and origins != ["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(grouping.router, prefix="/grouping", tags=["grouping"])


# Fast healthcheck
@app.get('/health', tags=["health"], include_in_schema=False)
async def health():
    return {"status": "ok"}


if __name__ == '__main__':
    import uvicorn

    uvicorn.run(app, host=os.getenv('HOST', '0.0.0.0'), port=int(os.getenv('PORT', '8000')))
