import logging

from .config import CORS_ORIGINS, LOG_LEVEL

# Log configuration (before other imports)
logging.basicConfig(
    level=getattr(logging, LOG_LEVEL, logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
)

from fastapi import FastAPI, Request  # noqa: E402
from fastapi.middleware.cors import CORSMiddleware  # noqa: E402
from fastapi.responses import JSONResponse  # noqa: E402
from starlette.exceptions import HTTPException as StarletteHTTPException  # noqa: E402

from .database import create_tables  # noqa: E402
from .routers import auth, tasks  # noqa: E402
from .utils.datetime_helper import utcnow  # noqa: E402

logger = logging.getLogger(__name__)

API_VERSION = "1.0.0"
AVAILABLE_ENDPOINTS = [
    "GET /api/health",
    "GET /api/todos",
    "GET /api/todos/:id",
    "POST /api/todos",
    "PUT /api/todos/:id",
    "PATCH /api/todos/:id/toggle",
    "DELETE /api/todos/:id",
    "GET /api/todos/stats",
]

# Create FastAPI app
app = FastAPI(
    title="Todo API",
    description="REST API for the todo list, with a demo login gate",
    version=API_VERSION,
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(auth.router, prefix="/api/auth", tags=["auth"])
app.include_router(tasks.router, prefix="/api", tags=["todos"])

# Create tables on startup
@app.on_event("startup")
def on_startup():
    create_tables()

@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    body = {"success": False, "message": exc.detail}
    if exc.status_code == 404 and exc.detail == "Not Found":
        body = {
            "success": False,
            "message": "Endpoint not found",
            "available_endpoints": AVAILABLE_ENDPOINTS,
        }
    return JSONResponse(status_code=exc.status_code, content=body, headers=getattr(exc, "headers", None))

@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content={"success": False, "message": "Something went wrong!", "error": "Internal server error"},
    )

@app.get("/")
def read_root():
    return {"message": "Todo API"}

@app.get("/api/health")
def health_check():
    return {
        "success": True,
        "message": "Todo API is running",
        "timestamp": utcnow().isoformat(),
        "version": API_VERSION,
    }
