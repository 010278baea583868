import logging
import time
from contextlib import AsyncExitStack

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pymongo.errors import PyMongoError
from starlette.exceptions import HTTPException

from soes.connections import mongo_lifespan, redis_lifespan
from soes.api.auth import router as auth_router
from soes.api.admin import router as admin_router
from soes.api.student import router as student_router
from soes.utils.base.errors import AppError, UpstreamFailureError
from soes.utils.base.responses import failure, success
from soes.utils.config import settings


logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


async def combined_lifespan(app: FastAPI):
    async with AsyncExitStack() as stack:
        await stack.enter_async_context(mongo_lifespan(app))
        await stack.enter_async_context(redis_lifespan(app))

        yield


def _diagnostics(detail):
    # Diagnostic detail never leaves a production deployment
    return None if settings.is_production else detail


app = FastAPI(title="SOES Exams Platform", version="1.0.0", lifespan=combined_lifespan)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start_time = time.time()
    response = await call_next(request)
    duration = time.time() - start_time
    logger.info(
        "%s %s - Status: %s - Duration: %.3fs",
        request.method, request.url.path, response.status_code, duration,
    )
    return response


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    return JSONResponse(
        status_code=exc.status_code,
        content=failure(exc.message, code=exc.code, error=_diagnostics(exc.detail)),
    )


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    code = "invalid-answers-shape" if any("answers" in err.get("loc", ()) for err in errors) else "invalid-input"
    message = "; ".join(str(err.get("msg")) for err in errors) or "Invalid input"
    detail = [{"loc": list(err.get("loc", ())), "msg": err.get("msg")} for err in errors]
    return JSONResponse(status_code=400, content=failure(message, code=code, error=_diagnostics(detail)))


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content=failure("Route not found" if exc.status_code == 404 else str(exc.detail)),
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(PyMongoError)
async def storage_error_handler(request: Request, exc: PyMongoError):
    logger.error("Data store failure on %s %s: %s", request.method, request.url.path, exc)
    error = UpstreamFailureError()
    return JSONResponse(status_code=error.status_code, content=failure(error.message, code=error.code))


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error("Unhandled exception: %s", exc, exc_info=True)
    return JSONResponse(
        status_code=500,
        content=failure("Internal server error", error=_diagnostics(str(exc))),
    )


@app.get("/")
def health_check() -> dict:
    return success(message=f"{settings.app_name} backend API is running", version=app.version)


app.include_router(auth_router, prefix="/api/auth")
app.include_router(admin_router, prefix="/api/admin")
app.include_router(student_router, prefix="/api/student")
