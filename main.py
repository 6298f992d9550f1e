import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exception_handlers import request_validation_exception_handler
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
import uvicorn

from budget_router import budget_router
from config import Config, configure_logging
from database import init_db
from errors import DependencyReadError, TriggerValidationError
from jobs import create_scheduler
from limit_router import limit_router
from router import router

configure_logging()
logger = logging.getLogger(__name__)

init_db()


@asynccontextmanager
async def lifespan(app: FastAPI):
    scheduler = None
    if Config.SCHEDULER_ENABLED:
        scheduler = create_scheduler()
        scheduler.start()
        logger.info("Background scheduler started")
    yield
    if scheduler is not None:
        scheduler.shutdown(wait=False)


app = FastAPI(title="SpendWise API", lifespan=lifespan)


@app.exception_handler(TriggerValidationError)
async def trigger_validation_error_handler(request: Request, exc: TriggerValidationError):
    return JSONResponse(status_code=400, content={"error": str(exc)})


@app.exception_handler(DependencyReadError)
async def dependency_read_error_handler(request: Request, exc: DependencyReadError):
    logger.error("Limit check aborted: %s", exc)
    return JSONResponse(status_code=503, content={"error": str(exc)})


@app.exception_handler(RequestValidationError)
async def request_validation_error_handler(request: Request, exc: RequestValidationError):
    # the limit-check trigger answers malformed input like a missing id
    if request.url.path != "/api/limits/check":
        return await request_validation_exception_handler(request, exc)
    error = exc.errors()[0]
    field = ".".join(str(part) for part in error["loc"] if part != "body") or "body"
    return JSONResponse(status_code=400, content={"error": f"{field}: {error['msg']}"})


app.include_router(router, prefix="/api", tags=["expenses"])
app.include_router(limit_router, prefix="/api", tags=["limits"])
app.include_router(budget_router, prefix="/api", tags=["budgets"])


@app.get("/")
def home():
    return {"message": "Welcome to SpendWise API"}


if __name__ == "__main__":
    uvicorn.run(app, host="127.0.0.1", port=8000)
