from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.exceptions import RequestValidationError
from pydantic import ValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
import structlog
from app.core.config import settings
from app.core.logging import configure_logging
from app.core.rate_limit import SlidingWindowRateLimiter
from app.database import init_db
from app.api.routes import admin, event, payment, pricing, registration
from app.schemas.CommonResponse import ApiResponse


logger = structlog.get_logger(__name__)

app = FastAPI(title="Conference Registration")
app.state.rate_limiter = SlidingWindowRateLimiter(settings.RATE_LIMIT_REQUESTS, settings.RATE_LIMIT_WINDOW_SECONDS)

def format_errors(errors):
    messages = []
    for e in errors:
        msg = e.get("msg", "Invalid input")
        loc = [str(part) for part in e.get("loc", ()) if part != "body"]
        messages.append(f"{'.'.join(loc)}: {msg}" if loc else msg)
    return messages




@app.exception_handler(RequestValidationError)
async def request_validation_exception_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=ApiResponse(
            success=False,
            statusCode=status.HTTP_400_BAD_REQUEST,
            message="Validation failed",
            data={"errors": format_errors(exc.errors())}
        ).model_dump()
    )


@app.exception_handler(ValidationError)
async def pydantic_validation_exception_handler(request: Request, exc: ValidationError):
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=ApiResponse(
            success=False,
            statusCode= status.HTTP_400_BAD_REQUEST,
            message="Validation failed",
            data={"errors": format_errors(exc.errors())}
        ).model_dump()
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content=ApiResponse(
            success=False,
            statusCode=exc.status_code,
            message=str(exc.detail),
            data=None
        ).model_dump(),
        headers=getattr(exc, "headers", None)
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception("unhandled_error", path=request.url.path, method=request.method)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=ApiResponse(
            success=False,
            statusCode=status.HTTP_500_INTERNAL_SERVER_ERROR,
            message="Internal server error",
            data=None
        ).model_dump()
    )


@app.on_event("startup")
async def startup():
    configure_logging()
    init_db()
    if not settings.STRIPE_WEBHOOK_SECRET and not settings.insecure_webhooks_allowed:
        logger.warning("webhook_secret_missing", env=settings.ENV)




app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)





app.include_router(event.router)
app.include_router(pricing.router)
app.include_router(registration.router)
app.include_router(payment.router)
app.include_router(admin.router)





@app.get("/root")
async def root():
    return {"message": "Backend running..."}
