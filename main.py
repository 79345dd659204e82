import uvicorn
import time
import logging
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware

from app.api.analyze import router as analyze_router
from app.api.status import router as status_router
from app.api.results import router as results_router
from app.core.errors import AgentError, ValidationError
from app.utils.logging_config import setup_logging

# Initialize enhanced logging
setup_logging(level=logging.INFO)
logger = logging.getLogger("main")

app = FastAPI(title="Autonomous CI/CD Healing Agent API")

# ---------------------------------------------------------------------------
# Logging Middleware
# ---------------------------------------------------------------------------
class LoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        start_time = time.time()
        client_host = request.client.host if request.client else "unknown"
        logger.info("Incoming: %s %s from %s", request.method, request.url.path, client_host)

        try:
            response = await call_next(request)
            process_time = (time.time() - start_time) * 1000
            logger.info(
                "Outgoing: %s %s - Status: %d - Time: %.2fms",
                request.method, request.url.path, response.status_code, process_time,
            )
            return response
        except Exception as e:
            logger.error("Request failed: %s %s - Error: %s", request.method, request.url.path, e)
            raise

app.add_middleware(LoggingMiddleware)

# ---------------------------------------------------------------------------
# CORS — allow the React frontend (port 3000) to call the backend (port 8000)
# ---------------------------------------------------------------------------
app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:3000",
        "http://127.0.0.1:3000",
        "http://localhost:5173",
        "http://localhost:8000",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ---------------------------------------------------------------------------
# Error bodies are always {"error": "..."}
# ---------------------------------------------------------------------------
@app.exception_handler(AgentError)
async def agent_error_handler(request: Request, exc: AgentError):
    return JSONResponse(status_code=exc.status_code, content={"error": str(exc)})


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    first = exc.errors()[0] if exc.errors() else {}
    field = ".".join(str(p) for p in first.get("loc", ())[1:]) or "body"
    detail = first.get("msg", "invalid request")
    error = ValidationError(
        f"Missing or invalid required fields (repoUrl, teamName, leaderName): {field}: {detail}"
    )
    logger.warning("Rejected submission: %s", error)
    return await agent_error_handler(request, error)

# Health endpoint
@app.get("/health")
async def health_check():
    return {"status": "ok"}

# Register routers
app.include_router(analyze_router)
app.include_router(status_router)
app.include_router(results_router)

if __name__ == "__main__":
    uvicorn.run("main:app", host="127.0.0.1", port=8000, reload=True)
