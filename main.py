import os
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles
from fastapi.responses import JSONResponse
import traceback
from starlette.middleware.base import BaseHTTPMiddleware

# Import logging
from logging_config import logger, log_request_info, log_response_info

# Import routers
from routers import auth, users, clients, projects, estimations, quotations, comments
from config import CORS_ORIGINS, UPLOAD_DIR, UPLOAD_URL_PREFIX
from database.db import init_db, close_db
from services.exceptions import WorkflowError

@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting application...")
    await init_db()
    logger.info("Application started successfully")
    yield
    close_db()
    logger.info("Application stopped")

# Create FastAPI app
app = FastAPI(
    title="Contracting Workflow API",
    description="""
    # Contracting Workflow API

    Back office for a contracting company: clients, projects, cost
    estimations and priced quotations, from first draft to project close.

    ## Features

    - **User Management**: Staff accounts with role-based access control
    - **Clients**: Client records with unique TRN and VAT numbers
    - **Projects**: A project lifecycle enforced as a state machine
    - **Estimations**: Material and labour costing with a check then approve review
    - **Quotations**: VAT-priced quotations with item images
    - **Activity**: Comments and review events per project

    ## User Roles

    - **super_admin / admin**: Full access, approvals, user and client management
    - **engineer**: Projects, estimations and quotations
    - **finance**: Checks estimations, moves projects through invoicing
    - **driver**: Own profile only

    ## Authentication

    All endpoints except login require a JWT bearer token:

    ```
    Authorization: Bearer your_access_token
    ```

    Get one from `/auth/login` with your email as the username.
    """,
    version="1.0.0",
    lifespan=lifespan,
    openapi_tags=[
        {
            "name": "Authentication",
            "description": "Login and current user"
        },
        {
            "name": "Users",
            "description": "Staff accounts and roles"
        },
        {
            "name": "Clients",
            "description": "Client records"
        },
        {
            "name": "Projects",
            "description": "Projects, their status, progress and assignment"
        },
        {
            "name": "Estimations",
            "description": "Cost estimations and their review"
        },
        {
            "name": "Quotations",
            "description": "Quotations, item images and client decisions"
        },
        {
            "name": "Comments",
            "description": "Project comments and activity"
        },
        {
            "name": "Root",
            "description": "Root endpoint for the API"
        }
    ]
)

# Logging middleware
class LoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        log_request_info(request)
        try:
            response = await call_next(request)
            log_response_info(response)
            return response
        except Exception as e:
            logger.error(f"Request failed: {str(e)}")
            logger.error(traceback.format_exc())
            raise

# Add logging middleware
app.add_middleware(LoggingMiddleware)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Mount static files for uploaded item images
os.makedirs(UPLOAD_DIR, exist_ok=True)
app.mount(UPLOAD_URL_PREFIX, StaticFiles(directory=UPLOAD_DIR), name="uploads")

# Include routers
app.include_router(auth.router, prefix="/auth", tags=["Authentication"])
app.include_router(users.router, prefix="/users", tags=["Users"])
app.include_router(clients.router, prefix="/clients", tags=["Clients"])
app.include_router(projects.router, prefix="/projects", tags=["Projects"])
app.include_router(comments.router, prefix="/projects", tags=["Comments"])
app.include_router(estimations.router, prefix="/estimations", tags=["Estimations"])
app.include_router(quotations.router, prefix="/quotations", tags=["Quotations"])

# Root endpoint
@app.get("/", tags=["Root"])
async def root():
    logger.info("Root endpoint accessed")
    return {"message": "Welcome to Contracting Workflow API"}

# Workflow errors carry their own status code
@app.exception_handler(WorkflowError)
async def workflow_exception_handler(request: Request, exc: WorkflowError):
    if exc.status_code >= 500:
        logger.error(f"Workflow error on {request.method} {request.url.path}: {exc.message}")
    else:
        logger.warning(f"Rejected {request.method} {request.url.path}: {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message}
    )

# Global exception handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled exception: {str(exc)}")
    logger.error(traceback.format_exc())
    return JSONResponse(
        status_code=500,
        content={"detail": f"An unexpected error occurred: {str(exc)}"}
    )

if __name__ == "__main__":
    import uvicorn
    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=True)
