"""FastAPI server for Clarity: health check plus the model and notes relays."""

from __future__ import annotations

from dotenv import load_dotenv
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from clarity.api.routes.gemini import router as gemini_router
from clarity.api.routes.health import router as health_router
from clarity.api.routes.notion import router as notion_router
from clarity.config import API_HOST, API_PORT, APP_ORIGIN, APP_VERSION, is_development
from clarity.observability.logging import get_logger
from clarity.observability.telemetry import counter, log_event

# Load environment variables from .env file
load_dotenv()

logger = get_logger(__name__)

app = FastAPI(title="Clarity API", version=APP_VERSION)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Return field names only; request bodies may contain journal text or tokens."""
    counter("api.validation_errors")
    logger.warning("Validation error on %s", request.url.path)
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "detail": "Invalid request format. Please check your request and try again.",
            "invalid_fields": [str(err["loc"][-1]) for err in exc.errors()],
        },
    )


ALLOWED_ORIGINS = [APP_ORIGIN]
if is_development():
    ALLOWED_ORIGINS.extend(["http://localhost:5173", "http://127.0.0.1:5173"])

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization"],
)

app.include_router(health_router)
app.include_router(gemini_router)
app.include_router(notion_router)

log_event("api.startup", service="clarity", version=APP_VERSION)


def main() -> None:
    import uvicorn

    uvicorn.run("clarity.api.app:app", host=API_HOST, port=API_PORT)
