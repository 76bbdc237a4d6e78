import logging
from contextlib import asynccontextmanager
from pathlib import Path

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles

from clinicflow.api import (
    appointments_router,
    auth_router,
    catalog_router,
    doctors_router,
    lab_router,
    pharmacy_router,
    treatment_plans_router,
    upload_router,
)
from clinicflow.config import settings
from clinicflow.database.connection import Base, engine
from clinicflow.errors import ClinicError

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s"
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Create database tables
    Base.metadata.create_all(bind=engine)
    logger.info("Database tables ready")
    yield


app = FastAPI(
    title="Clinicflow API",
    description="Clinic appointments, treatment plans, lab and pharmacy fulfilment",
    version="1.0.0",
    lifespan=lifespan
)

# Serve uploaded files
UPLOAD_DIR = Path(settings.UPLOAD_DIR)
UPLOAD_DIR.mkdir(parents=True, exist_ok=True)
app.mount(settings.UPLOAD_URL_PREFIX, StaticFiles(directory=str(UPLOAD_DIR)), name="uploads")

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(ClinicError)
async def clinic_error_handler(request: Request, exc: ClinicError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.detail}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"status": "error", "code": exc.code, "detail": exc.detail}
    )


# Include routers
app.include_router(auth_router)
app.include_router(catalog_router)
app.include_router(doctors_router)
app.include_router(appointments_router)
app.include_router(treatment_plans_router)
app.include_router(lab_router)
app.include_router(pharmacy_router)
app.include_router(upload_router)


@app.get("/")
async def root():
    return {
        "message": "Clinicflow API",
        "status": "running",
        "version": "1.0.0",
        "endpoints": {
            "auth": "/api/auth",
            "catalog": "/api/public",
            "doctors": "/api/doctors",
            "appointments": "/api/appointments",
            "treatment_plans": "/api/treatment-plans",
            "lab": "/api/lab",
            "pharmacy": "/api/pharmacy",
            "upload": "/api/upload",
            "docs": "/docs"
        }
    }


@app.get("/health")
async def health_check():
    return {"status": "healthy"}


if __name__ == "__main__":
    uvicorn.run("clinicflow.main:app", host="0.0.0.0", port=8000, reload=True)
