import os
import traceback

from fastapi import APIRouter, FastAPI, HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.openapi.docs import get_redoc_html, get_swagger_ui_html
from fastapi.responses import JSONResponse
from mangum import Mangum

from app.api.routes import admin, health, raffle
from app.api.routes.health import VERSION
from app.core.config import settings
from app.core.logging import configure_logging
from app.services.raffle import ErrorKind

logger = configure_logging()

api_gateway_base_path = os.getenv("API_GATEWAY_BASE_PATH", "").strip()
if api_gateway_base_path and not api_gateway_base_path.startswith("/"):
    api_gateway_base_path = f"/{api_gateway_base_path}"

app = FastAPI(
    title="Numbered Raffle API",
    version=VERSION,
    docs_url=None,
    redoc_url=None,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_allow_origins,
    allow_credentials=False,
    allow_methods=settings.cors_allow_methods,
    allow_headers=settings.cors_allow_headers,
)

api_router = APIRouter()
api_router.include_router(health.router)
api_router.include_router(admin.router)
api_router.include_router(raffle.router)
app.include_router(api_router)


@app.exception_handler(HTTPException)
def http_exception_handler(_: Request, exc: HTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail, "type": "http_error"},
    )


@app.exception_handler(RequestValidationError)
def validation_exception_handler(_: Request, exc: RequestValidationError):
    errors = exc.errors()
    first = errors[0] if errors else {}
    field = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = first.get("msg", "Validation error")
    return JSONResponse(
        status_code=422,
        content={
            "detail": jsonable_encoder(errors),
            "message": f"{field}: {message}" if field else message,
            "type": "validation_error",
            "error_kind": ErrorKind.VALIDATION_ERROR.value,
        },
    )


@app.exception_handler(Exception)
def unhandled_exception_handler(request: Request, exc: Exception):
    logger.error("Unhandled error on %s %s", request.method, request.url.path, exc_info=exc)
    if settings.expose_errors:
        detail = {
            "type": exc.__class__.__name__,
            "message": str(exc) or "Unhandled error",
            "trace": "".join(traceback.format_exception(type(exc), exc, exc.__traceback__)),
        }
    else:
        detail = "Internal Server Error"
    return JSONResponse(status_code=500, content={"detail": detail, "type": "server_error"})


def _docs_base_path(request: Request) -> str:
    root_path = request.scope.get("root_path", "").rstrip("/")
    if root_path:
        return root_path
    if api_gateway_base_path:
        return api_gateway_base_path.rstrip("/")
    return ""


@app.get("/docs", include_in_schema=False)
def swagger_ui(request: Request):
    openapi_url = f"{_docs_base_path(request)}{app.openapi_url}"
    return get_swagger_ui_html(openapi_url=openapi_url, title=f"{app.title} - Swagger UI")


@app.get("/redoc", include_in_schema=False)
def redoc(request: Request):
    openapi_url = f"{_docs_base_path(request)}{app.openapi_url}"
    return get_redoc_html(openapi_url=openapi_url, title=f"{app.title} - ReDoc")


handler = Mangum(app, api_gateway_base_path=api_gateway_base_path or None)
