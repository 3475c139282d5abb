import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import ORJSONResponse
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles

from database import lifespan
from routers import api_status, authentication, get_me, stats, ticket, user
from settings import settings
from utilities.exceptions import FieldValidationError, HelpdeskError
from utilities.photo_storage import upload_dir


logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)


description = """
A RESTful API for an IT helpdesk: users file equipment tickets, IT staff
triage and resolve them, administrators manage users and read reports.
Built with FastAPI and SQLModel 🚀
"""


app = FastAPI(lifespan=lifespan,
              title="helpdesk API",
              description=description,
              version="1.0.0",
              license_info={
                  "name": "MIT",
                  "url": "https://opensource.org/license/MIT",
              },
              default_response_class=ORJSONResponse)

app.add_middleware(GZipMiddleware, minimum_size=1000, compresslevel=4)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_methods=["GET", "POST", "PUT", "OPTIONS", "HEAD", "DELETE"],
    allow_headers=["Content-Type", "accept", "Authorization", "Authorization-Refresh"],
)
app.mount("/uploads", StaticFiles(directory=upload_dir()), name="uploads")


@app.middleware("http")
async def add_security_headers(request: Request, call_next):
    response = await call_next(request)
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-XSS-Protection"] = "1; mode=block"
    response.headers["X-Frame-Options"] = "DENY"
    return response


async def helpdesk_error_handler(request: Request, exc: HelpdeskError):
    content = {"detail": exc.detail, "code": exc.code}
    if isinstance(exc, FieldValidationError):
        content["errors"] = exc.errors
    return ORJSONResponse(status_code=exc.status_code, content=content)


async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = []
    for error in exc.errors():
        # drop the "body"/"query"/"form" location prefix
        location = [str(part) for part in error.get("loc", ())[1:]]
        errors.append({"field": ".".join(location) or "request", "message": error.get("msg", "")})
    return ORJSONResponse(
        status_code=422,
        content={"detail": "Validation failed", "code": FieldValidationError.code, "errors": errors},
    )


async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return ORJSONResponse(
        status_code=500,
        content={"detail": "Internal server error", "code": HelpdeskError.code},
    )


app.add_exception_handler(HelpdeskError, helpdesk_error_handler)
app.add_exception_handler(RequestValidationError, request_validation_handler)
app.add_exception_handler(Exception, unhandled_error_handler)


app.include_router(api_status.router, tags=["API status"])
app.include_router(authentication.router, tags=["Authentication"])
app.include_router(get_me.router, tags=["Authentication"])
app.include_router(user.router, tags=["Users"])
app.include_router(ticket.router, tags=["Tickets"])
app.include_router(stats.router, tags=["Statistics"])
