import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

from trustlessid.config import settings
from trustlessid.database import create_tables
from trustlessid.errors import InternalError, InvalidInput, NotFound, Unauthorized, VerificationError

logger = logging.getLogger(__name__)

HTTP_ERROR_CODES = {
    401: Unauthorized.code,
    403: "forbidden",
    404: NotFound.code,
    405: "method_not_allowed",
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    await create_tables()
    yield


app = FastAPI(title=settings.app_name, lifespan=lifespan, redirect_slashes=False)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(VerificationError)
async def verification_error_handler(request: Request, exc: VerificationError):
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail, "code": exc.code})


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    code = HTTP_ERROR_CODES.get(exc.status_code, "http_error")
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail, "code": code},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    fields = sorted({".".join(str(p) for p in e["loc"][1:]) or str(e["loc"][0]) for e in errors})
    detail = f"Invalid or missing fields: {', '.join(fields)}" if fields else "Invalid request"
    return JSONResponse(status_code=400, content={"detail": detail, "code": InvalidInput.code})


@app.exception_handler(SQLAlchemyError)
async def storage_error_handler(request: Request, exc: SQLAlchemyError):
    logger.error("Storage error on %s %s", request.method, request.url.path, exc_info=exc)
    return _internal_error()


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.error("Unhandled error on %s %s", request.method, request.url.path, exc_info=exc)
    return _internal_error()


def _internal_error() -> JSONResponse:
    return JSONResponse(
        status_code=InternalError.status_code,
        content={"detail": "Internal server error", "code": InternalError.code},
    )


from trustlessid.auth.router import router as auth_router  # noqa: E402
from trustlessid.credentials.router import router as credentials_router  # noqa: E402
from trustlessid.verification.router import router as verification_router  # noqa: E402

app.include_router(auth_router)
app.include_router(credentials_router)
app.include_router(verification_router)


@app.get("/health")
async def health():
    return {"status": "ok"}
