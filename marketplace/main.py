import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from marketplace.core.config import get_settings
from marketplace.core.errors import WorkflowError
from marketplace.routers import admin as admin_router
from marketplace.routers import applications as applications_router
from marketplace.routers import clients as clients_router
from marketplace.routers import freelancers as freelancers_router
from marketplace.routers import meetings as meetings_router
from marketplace.routers import projects as projects_router
from marketplace.routers import public as public_router
from marketplace.routers import ratings as ratings_router

logger = logging.getLogger(__name__)


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    configure_logging(settings.log_level)
    logger.info("Starting marketplace API (debug=%s, storage=%s)", settings.debug, settings.storage_backend)
    yield
    logger.info("Shutting down marketplace API")


app = FastAPI(
    title="Freelance Marketplace API",
    version="0.1.0",
    lifespan=lifespan,
)

settings = get_settings()
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(WorkflowError)
async def workflow_error_handler(request: Request, exc: WorkflowError):
    if exc.status_code >= 500:
        logger.warning("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


app.include_router(projects_router.router)
app.include_router(applications_router.router)
app.include_router(meetings_router.router)
app.include_router(ratings_router.router)
app.include_router(admin_router.router)
app.include_router(freelancers_router.router)
app.include_router(clients_router.router)
app.include_router(public_router.router)


@app.get("/")
async def root():
    return {"message": "Welcome to the Freelance Marketplace API"}


def main():
    """Run the FastAPI application."""
    uvicorn.run(
        "marketplace.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
