from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from repokit.config import settings
from repokit.database.manager import DatabaseManager
from repokit.middleware.logging_md import LoggingMiddleware
from repokit.logging.logger import LogConfig
from repokit.exceptions.handler import BusinessException, global_exception_handler
from apps.blogging.api.router import router as blogging_router
import apps.models  # noqa: F401  (registers every table on SQLModel.metadata)


@asynccontextmanager
async def lifespan(app: FastAPI):
    manager = DatabaseManager.get_instance()
    await manager.sql.connect()
    await manager.sql.create_tables()
    yield
    await manager.sql.disconnect()


app = FastAPI(
    title=settings.APP_NAME,
    description=settings.APP_DESCRIPTION,
    version=settings.APP_VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
    lifespan=lifespan,
)

# Initialize logging configuration
LogConfig.setup_logging()

# Register global exception handlers
app.add_exception_handler(BusinessException, global_exception_handler)
app.add_exception_handler(RequestValidationError, global_exception_handler)
app.add_exception_handler(Exception, global_exception_handler)

app.add_middleware(LoggingMiddleware)

app.include_router(blogging_router, prefix="/api/v1", tags=["Blogging"])

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
