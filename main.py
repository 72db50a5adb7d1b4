from contextlib import asynccontextmanager
import logging
import os
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from dotenv import load_dotenv
from slabmarket.api.v1 import router as v1_endpoint
from slabmarket.scheduler import start_catalog_cronjob, stop_catalog_cronjob
from slabmarket.utils.logger import HealthCheckFilter, api_logger, scheduler_logger


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Load environment variables
    load_dotenv()
    env = (os.environ.get("ENV") or os.environ.get("APP_ENV") or "development").lower()
    api_logger.info(f"Starting Slabmarket API ({env})")

    # Startup
    logging.getLogger("uvicorn.access").addFilter(HealthCheckFilter())
    scheduler_logger.info("Starting catalog import scheduler...")
    start_catalog_cronjob()
    yield
    # Shutdown
    scheduler_logger.info("Stopping catalog import scheduler...")
    stop_catalog_cronjob()


app = FastAPI(
    title="API",
    description="Slabmarket API",
    version="1.0.0",
    lifespan=lifespan,
)

origins = ["*"]

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,  # Allow origins in the list
    allow_credentials=True,  # Allow cookies (if needed)
    allow_methods=["*"],  # Allow all methods (GET, POST, etc.)
    allow_headers=["*"],  # Allow all headers
)


app.include_router(v1_endpoint, prefix="/api/v1", tags=["API Version 1"])


@app.get("/", tags=["Root"])
def read_root():
    return {"status": "ok", "message": "Welcome Slabmarket API!"}


@app.get("/health", tags=["Health"])
def health_check():
    """Health check endpoint for monitoring"""
    return {"status": "healthy", "message": "Slabmarket API is running", "version": "1.0.0"}


# To run this application for development:
# uvicorn main:app --reload
