import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.core.config import settings
from app.api.v1.audit.router import router as audit_router
from app.api.v1.class_assignments.router import router as class_assignments_router
from app.api.v1.faculty.router import router as faculty_router
from app.api.v1.students.router import router as students_router


def create_app() -> FastAPI:
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    app = FastAPI(title="Class Binding Service")

    # CORS: allow frontend to call this API
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Routers
    app.include_router(class_assignments_router)
    app.include_router(faculty_router)
    app.include_router(students_router)
    app.include_router(audit_router)

    return app


app = create_app()
