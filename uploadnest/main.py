from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from uploadnest.config import settings
from uploadnest.database import engine
from uploadnest.errors import AppError, ErrorCode
from uploadnest.logging_config import get_logger
from uploadnest.models import Base
from uploadnest.object_store import ObjectStore, store_registry
from uploadnest.routers import analytics as analytics_router
from uploadnest.routers import apikeys as apikeys_router
from uploadnest.routers import auth as auth_router
from uploadnest.routers import files as files_router

logger = get_logger(__name__)

async def create_db_and_tables():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables created or already exist.")

@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("UploadNest starting up...")
    await create_db_and_tables()
    store_registry["store"] = ObjectStore.from_settings(settings)
    logger.info(f"Object store ready for bucket: {settings.AWS_S3_BUCKET}")
    yield
    logger.info("UploadNest shutting down...")
    store_registry.pop("store", None)
    await engine.dispose()

app = FastAPI(
    title="UploadNest",
    version="0.1.0",
    lifespan=lifespan
)

@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    logger.warning(f"{request.method} {request.url.path} failed: {exc.status_code} {exc.error_code.value} {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    details = "; ".join(
        f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}" for error in exc.errors()
    )
    logger.info(f"Validation failed for {request.method} {request.url.path}: {details}")
    return JSONResponse(
        status_code=400,
        content={
            "statusCode": 400,
            "message": details or "Validation failed",
            "errorCode": ErrorCode.VALIDATION_ERROR.value,
            "success": False,
        }
    )

@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return JSONResponse(
        status_code=500,
        content={
            "statusCode": 500,
            "message": "Internal Server Error",
            "errorCode": ErrorCode.INTERNAL_SERVER_ERROR.value,
            "success": False,
        }
    )

app.include_router(auth_router.router, prefix=f"{settings.BASE_PATH}/auth")
app.include_router(files_router.router, prefix=f"{settings.BASE_PATH}/files")
app.include_router(apikeys_router.router, prefix=f"{settings.BASE_PATH}/apikeys")
app.include_router(analytics_router.router, prefix=f"{settings.BASE_PATH}/analytics")

@app.get("/ping")
async def ping():
    return {"ping": "pong! from UploadNest"}

@app.get("/")
async def read_root():
    return {"message": "Welcome to the UploadNest API"}

if __name__ == "__main__":
    import uvicorn
    logger.info(f"Starting UploadNest on {settings.HOST}:{settings.PORT}")
    uvicorn.run("uploadnest.main:app", host=settings.HOST, port=settings.PORT, reload=True)
