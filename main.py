import logging
from pathlib import Path

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles

from config import settings
from db import create_db_and_tables
from logging_config import setup_logging
from routers import auth, claims, donations, feedback, ngos, pages, upload, users

setup_logging()
logger = logging.getLogger(__name__)

app = FastAPI(title="NeedyConnect")

app.mount(
    "/uploads",
    StaticFiles(directory=settings.upload_dir, check_dir=False),
    name="uploads",
)


@app.on_event("startup")
def on_startup() -> None:
    Path(settings.upload_dir).mkdir(parents=True, exist_ok=True)
    create_db_and_tables()
    logger.info("NeedyConnect started")


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    """Report malformed bodies and parameters as 400 like the handlers' own checks."""
    problems = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error["loc"] if part != "body")
        problems.append(f"{location}: {error['msg']}" if location else error["msg"])
    return JSONResponse(
        status_code=400,
        content={"detail": "Invalid input: " + "; ".join(problems)},
    )


app.include_router(auth.router)
app.include_router(users.router, prefix="/users")
app.include_router(ngos.router, prefix="/ngos")
app.include_router(claims.router, prefix="/donations")
app.include_router(donations.router, prefix="/donations")
app.include_router(feedback.router, prefix="/feedback")
app.include_router(upload.router)

app.include_router(pages.router)
