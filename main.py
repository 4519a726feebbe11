import logging
import time
from pathlib import Path
from typing import Any

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import HTMLResponse, JSONResponse
from fastapi.templating import Jinja2Templates
from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from starlette.concurrency import run_in_threadpool
from starlette.exceptions import HTTPException as StarletteHTTPException

from config import get_settings
from database import SessionLocal
from models import Cost, RequestLog, User
from periods import reference_now
from scheduler import SchedulerManager
from schemas import CostIn, UserIn, classify_add_payload, format_validation_error
from services import (
    CostService,
    DuplicateUserError,
    LogService,
    ReportService,
    UserNotFound,
    UserService,
    ValidationFailed,
    plain_number,
)


BASE_DIR = Path(__file__).resolve().parent
logger = logging.getLogger(__name__)


def _load_app_version() -> str:
    try:
        import tomllib
    except Exception:
        return "unknown"
    try:
        with open(BASE_DIR / "pyproject.toml", "rb") as f:
            data = tomllib.load(f)
        return str(data.get("project", {}).get("version", "unknown"))
    except Exception:
        return "unknown"


APP_VERSION = _load_app_version()

app = FastAPI(title="Cost Manager", version=APP_VERSION)
app.state.session_factory = SessionLocal
templates = Jinja2Templates(directory=str(BASE_DIR / "templates"))

ERROR_CODES = {
    400: "validation_error",
    404: "not_found",
    405: "method_not_allowed",
    500: "internal_error",
}


def api_error(status_code: int, error: str, message: str) -> HTTPException:
    return HTTPException(
        status_code=status_code, detail={"error": error, "message": message}
    )


def get_db(request: Request):
    db = request.app.state.session_factory()
    try:
        yield db
    finally:
        db.close()


scheduler_manager = SchedulerManager()


@app.on_event("startup")
def startup_event():
    scheduler_manager.start()


@app.on_event("shutdown")
def shutdown_event():
    scheduler_manager.stop()


def _save_request_log(
    factory: sessionmaker,
    method: str,
    path: str,
    status_code: int,
    duration_ms: float,
) -> None:
    session: Session = factory()
    try:
        LogService(session).record(
            "http_request",
            method=method,
            path=path,
            status_code=status_code,
            meta={"duration_ms": duration_ms},
        )
    except SQLAlchemyError:
        session.rollback()
        logger.exception(f"request_log: failed to persist method={method} path={path}")
    finally:
        session.close()


async def _log_request(request: Request, status_code: int, started: float) -> None:
    duration_ms = round((time.perf_counter() - started) * 1000, 2)
    path = request.url.path
    if request.url.query:
        path = f"{path}?{request.url.query}"
    logger.info(
        f"http_request: method={request.method} path={path} "
        f"status={status_code} duration_ms={duration_ms}"
    )
    await run_in_threadpool(
        _save_request_log,
        request.app.state.session_factory,
        request.method,
        path,
        status_code,
        duration_ms,
    )


@app.middleware("http")
async def persist_request_log(request: Request, call_next):
    started = time.perf_counter()
    try:
        response = await call_next(request)
    except Exception:
        await _log_request(request, 500, started)
        raise
    await _log_request(request, response.status_code, started)
    return response


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    if isinstance(exc.detail, dict):
        body = exc.detail
    else:
        body = {
            "error": ERROR_CODES.get(exc.status_code, "http_error"),
            "message": str(exc.detail),
        }
    return JSONResponse(body, status_code=exc.status_code, headers=exc.headers)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ()) if p != "body")
        parts.append(f"{loc}: {err['msg']}" if loc else err["msg"])
    return JSONResponse(
        {"error": "validation_error", "message": "; ".join(parts)}, status_code=400
    )


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception(f"unhandled_error: path={request.url.path}")
    return JSONResponse(
        {"error": "internal_error", "message": "internal server error"},
        status_code=500,
    )


def record_access(db: Session, path: str, **meta: Any) -> None:
    logger.info(f"endpoint_access: path={path}")
    LogService(db).record("endpoint_access", path=path, meta=meta or None)


def user_json(user: User) -> dict[str, Any]:
    return {
        "id": user.id,
        "first_name": user.first_name,
        "last_name": user.last_name,
        "birthday": user.birthday.isoformat(),
    }


def cost_json(cost: Cost) -> dict[str, Any]:
    return {
        "description": cost.description,
        "category": cost.category,
        "userid": cost.userid,
        "sum": plain_number(cost.sum),
        "createdAt": cost.created_at.isoformat(),
    }


def log_json(entry: RequestLog) -> dict[str, Any]:
    return {
        "id": entry.id,
        "level": entry.level,
        "message": entry.message,
        "method": entry.method,
        "path": entry.path,
        "statusCode": entry.status_code,
        "meta": entry.meta,
        "createdAt": entry.created_at.isoformat(),
    }


@app.get("/", response_class=HTMLResponse)
def landing_page(request: Request):
    settings = get_settings()
    return templates.TemplateResponse(
        request,
        "index.html",
        {
            "base_url": settings.public_base_url,
            "categories": settings.categories,
            "team": settings.team,
            "version": APP_VERSION,
        },
    )


@app.get("/health")
def health():
    return {"ok": True}


@app.get("/api/about")
def api_about(db: Session = Depends(get_db)):
    record_access(db, "/api/about")
    return [
        {"first_name": first_name, "last_name": last_name}
        for first_name, last_name in get_settings().team
    ]


@app.get("/api/users")
def api_users(db: Session = Depends(get_db)):
    record_access(db, "/api/users")
    return [user_json(user) for user in UserService(db).list_all()]


@app.get("/api/users/{user_id}")
def api_user_details(user_id: int, db: Session = Depends(get_db)):
    record_access(db, f"/api/users/{user_id}", id=user_id)
    service = UserService(db)
    try:
        user = service.get(user_id)
    except UserNotFound as exc:
        raise api_error(404, "not_found", str(exc)) from exc
    return {
        "first_name": user.first_name,
        "last_name": user.last_name,
        "id": user.id,
        "total": plain_number(service.total_costs(user_id)),
    }


@app.post("/api/add", status_code=201)
async def api_add(request: Request, db: Session = Depends(get_db)):
    record_access(db, "/api/add")
    try:
        body = await request.json()
    except ValueError as exc:
        raise api_error(400, "validation_error", "body must be valid UTF-8 JSON") from exc

    try:
        kind = classify_add_payload(body)
    except ValueError as exc:
        raise api_error(400, "validation_error", str(exc)) from exc

    if kind == "user":
        try:
            data = UserIn.model_validate(body)
        except ValidationError as exc:
            raise api_error(
                400, "validation_error", format_validation_error(exc)
            ) from exc
        try:
            user = UserService(db).create(data)
        except DuplicateUserError as exc:
            raise api_error(400, "db_error", str(exc)) from exc
        return user_json(user)

    try:
        data = CostIn.model_validate(body)
    except ValidationError as exc:
        raise api_error(400, "validation_error", format_validation_error(exc)) from exc
    settings = get_settings()
    try:
        cost = CostService(db, settings).create(
            data, now=reference_now(settings.timezone)
        )
    except ValidationFailed as exc:
        raise api_error(400, "validation_error", str(exc)) from exc
    return cost_json(cost)


@app.api_route("/api/add", methods=["GET", "PUT", "PATCH", "DELETE"])
def api_add_wrong_method(request: Request):
    settings = get_settings()
    base = settings.public_base_url
    body = {
        "error": "method_not_allowed",
        "status": 405,
        "path": request.url.path,
        "method_received": request.method,
        "allowed": ["POST"],
        "message": "This endpoint accepts POST only.",
        "how_to_fix": (
            "Send a POST request with Content-Type: application/json "
            "and a valid JSON body."
        ),
        "payloads": {
            "add_user": {
                "required_fields": [
                    "id:Number",
                    "first_name:String",
                    "last_name:String",
                    "birthday:YYYY-MM-DD",
                ]
            },
            "add_cost": {
                "required_fields": [
                    "userid:Number",
                    "description:String",
                    f"category:{'|'.join(settings.categories)}",
                    "sum:Number",
                ],
                "optional_fields": ["createdAt:ISO-8601 (must not be in the past)"],
            },
        },
        "examples": {
            "curl": (
                f"curl -X POST {base}/api/add -H \"Content-Type: application/json\" "
                "-d '{\"userid\":123123,\"description\":\"milk\","
                "\"category\":\"food\",\"sum\":8}'"
            ),
        },
        "see_also": {
            "report": "GET /api/report?id=<userid>&year=<YYYY>&month=<1..12>",
            "user_details": "GET /api/users/<id>",
            "users": "GET /api/users",
            "about": "GET /api/about",
            "logs": "GET /api/logs",
        },
    }
    return JSONResponse(body, status_code=405, headers={"Allow": "POST"})


@app.get("/api/report")
def api_report(
    userid: int = Query(..., alias="id"),
    year: int = Query(..., ge=1, le=9999),
    month: int = Query(..., ge=1, le=12),
    db: Session = Depends(get_db),
):
    record_access(db, "/api/report", id=userid, year=year, month=month)
    settings = get_settings()
    now = reference_now(settings.timezone)
    return ReportService(db, settings).get_monthly_report(userid, year, month, now=now)


@app.get("/api/logs")
def api_logs(db: Session = Depends(get_db)):
    record_access(db, "/api/logs")
    return [log_json(entry) for entry in LogService(db).list_recent()]


def main():
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=False)


if __name__ == "__main__":
    main()
