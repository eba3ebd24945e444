"""JSON REST API for the High Street Gym platform.

Endpoints:
 • POST   /api/login, DELETE /api/logout
 • POST   /api/users, GET|PUT|PATCH /api/users/self
 • GET    /api/sessions[/self], POST /api/sessions, DELETE /api/sessions/<id>
 • GET    /api/sessions/export/xml/weekly?startDate=&endDate=[&trainerId=]
 • GET    /api/bookings/self, GET|DELETE /api/bookings/<id>, POST /api/bookings
 • GET    /api/bookings/export/xml/history?onlyPast=[&memberId=]
 • GET    /api/blogs, POST /api/blogs, PATCH|DELETE /api/blogs/<id>

Requests authenticate with the ``x-auth-key`` header returned by ``/api/login``.
"""

from __future__ import annotations

import logging
from functools import wraps
from typing import Any, Callable

from flask import Blueprint, current_app, g, jsonify, request
from werkzeug.exceptions import HTTPException

from highstreetgym.gym.errors import (
    AuthorizationError,
    GymError,
    NotFound,
    PrincipalForbidden,
    PrincipalMissing,
    ValidationError,
)
from highstreetgym.gym.exporters import export_booking_history, export_weekly_sessions
from highstreetgym.gym.records import EnrichedBooking, Principal
from highstreetgym.gym.system import GymSystem
from highstreetgym.gym.weekly import normalize_date

bp = Blueprint("api", __name__, url_prefix="/api")
log = logging.getLogger(__name__)

EXTENSION_KEY = "highstreetgym"
AUTH_HEADER = "x-auth-key"


def get_system() -> GymSystem:
    return current_app.extensions[EXTENSION_KEY]


# ---------------------------------------------------------------------------
# Request parameters
# ---------------------------------------------------------------------------
def parse_flag(name: str, value: str | None) -> bool:
    """Read a ``true``/``false`` query flag; absent means false."""

    if value is None or value == "":
        return False
    lowered = value.strip().lower()
    if lowered in ("true", "1"):
        return True
    if lowered in ("false", "0"):
        return False
    raise ValidationError("Invalid query parameter", errors=[f"{name} must be true or false"])


def parse_date_arg(name: str, value: str | None) -> str | None:
    """Return a normalized ``YYYY-MM-DD`` bound or ``None`` when absent."""

    try:
        return normalize_date(value)
    except ValueError as exc:
        log.warning("Rejected malformed %s=%r", name, value)
        raise ValidationError("Invalid query parameter", errors=[f"{name} must be YYYY-MM-DD"]) from exc


def subject_principal(principal: Principal, param: str) -> Principal:
    """Admins may act for another user through ``param``; everyone else acts for themselves."""

    if principal.role == "admin":
        user_id = request.args.get(param, type=int)
        if user_id and user_id != principal.id:
            return get_system().fetcher.fetch_principal(user_id)
    return principal


def _payload() -> dict:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Invalid request body", errors=["Body must be a JSON object"])
    return data


def body_text(data: dict, name: str, *, required: bool = True) -> str | None:
    """Read a string member of a JSON body."""

    value = data.get(name)
    if value is None or value == "":
        if required:
            raise ValidationError("Invalid request body", errors=[f"{name} is required"])
        return None
    if not isinstance(value, str):
        raise ValidationError("Invalid request body", errors=[f"{name} must be a string"])
    return value


def body_id(data: dict, name: str, *, required: bool = True) -> int | None:
    """Read a positive integer id, accepting its decimal string form."""

    value = data.get(name)
    if value is None or value == "":
        if required:
            raise ValidationError("Invalid request body", errors=[f"{name} is required"])
        return None
    if isinstance(value, str) and value.strip().isdigit():
        value = int(value)
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ValidationError("Invalid request body", errors=[f"{name} must be a positive integer"])
    return value


# ---------------------------------------------------------------------------
# Authentication
# ---------------------------------------------------------------------------
@bp.before_request
def load_principal() -> Any:
    g.principal = None
    key = request.headers.get(AUTH_HEADER)
    if not key:
        return None
    try:
        g.principal = get_system().authenticate(key)
    except NotFound as exc:
        return jsonify({"message": str(exc)}), 404
    return None


def restrict(*roles: str) -> Callable:
    """Require an authenticated principal, optionally holding one of ``roles``."""

    def decorator(view: Callable) -> Callable:
        @wraps(view)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            principal = g.get("principal")
            if principal is None:
                raise PrincipalMissing()
            if roles and principal.role not in roles:
                raise PrincipalForbidden()
            return view(*args, **kwargs)

        return wrapper

    return decorator


@bp.after_request
def allow_cross_origin(response: Any) -> Any:
    response.headers["Access-Control-Allow-Origin"] = "*"
    response.headers["Access-Control-Allow-Headers"] = f"Content-Type, {AUTH_HEADER}"
    response.headers["Access-Control-Allow-Methods"] = "GET, POST, PATCH, DELETE, OPTIONS"
    return response


@bp.errorhandler(GymError)
def handle_gym_error(exc: GymError) -> Any:
    body: dict[str, Any] = {"message": str(exc)}
    if exc.errors:
        body["errors"] = list(exc.errors)
    return jsonify(body), exc.status_code


@bp.errorhandler(Exception)
def handle_unexpected(exc: Exception) -> Any:
    if isinstance(exc, HTTPException):
        return exc
    log.exception("Unhandled error on %s %s", request.method, request.path)
    body = {"message": "Internal server error"}
    if current_app.debug:
        body["error"] = str(exc)
    return jsonify(body), 500


@bp.post("/login")
def login() -> Any:
    data = _payload()
    if not data.get("email") or not data.get("password"):
        raise ValidationError("Email and password are required")
    result = get_system().login(
        email=body_text(data, "email"),
        password=body_text(data, "password"),
    )
    return jsonify({"message": "Authentication successful", **result})


@bp.delete("/logout")
@restrict()
def logout() -> Any:
    get_system().logout(request.headers[AUTH_HEADER])
    return jsonify({"message": "Logout successful"})


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------
@bp.post("/users")
def register() -> Any:
    data = _payload()
    user = get_system().register_user(
        email=body_text(data, "email"),
        password=body_text(data, "password"),
        first_name=body_text(data, "firstName"),
        last_name=body_text(data, "lastName"),
    )
    return jsonify({"message": "User created", "user": Principal.from_row(user).to_dict()}), 201


@bp.get("/users/self")
@restrict()
def current_user() -> Any:
    return jsonify({"user": g.principal.to_dict()})


@bp.route("/users/self", methods=["PUT", "PATCH"])
@restrict()
def update_current_user() -> Any:
    """Update the caller's own name or password; the role is not self-service."""

    data = _payload()
    user = get_system().update_user(
        g.principal.id,
        first_name=body_text(data, "firstName", required=False),
        last_name=body_text(data, "lastName", required=False),
        password=body_text(data, "password", required=False),
    )
    return jsonify({"message": "User updated", "user": Principal.from_row(user).to_dict()})


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------
@bp.get("/sessions")
def list_sessions() -> Any:
    sessions = get_system().list_sessions()
    return jsonify({"sessions": [session.to_dict() for session in sessions]})


@bp.get("/sessions/self")
@restrict("trainer", "admin")
def list_own_sessions() -> Any:
    sessions = get_system().list_sessions_for_trainer(g.principal.id)
    return jsonify({"sessions": [session.to_dict() for session in sessions]})


@bp.post("/sessions")
@restrict("trainer", "admin")
def create_session() -> Any:
    data = _payload()
    trainer_id = g.principal.id
    if g.principal.role == "admin":
        trainer_id = body_id(data, "trainerId", required=False) or trainer_id
    session = get_system().create_session(
        activity_id=body_id(data, "activityId"),
        location_id=body_id(data, "locationId"),
        trainer_id=trainer_id,
        session_date=body_text(data, "sessionDate"),
        session_time=body_text(data, "sessionTime"),
    )
    return jsonify({"message": "Session created", "id": session["id"]}), 201


@bp.delete("/sessions/<int:session_id>")
@restrict("trainer", "admin")
def delete_session(session_id: int) -> Any:
    get_system().delete_session(session_id, principal=g.principal)
    return jsonify({"message": "Session deleted"})


@bp.get("/sessions/export/xml/weekly")
@restrict("trainer", "admin")
def export_sessions_xml() -> Any:
    start_date = parse_date_arg("startDate", request.args.get("startDate"))
    end_date = parse_date_arg("endDate", request.args.get("endDate"))
    trainer = subject_principal(g.principal, "trainerId")
    system = get_system()
    export = export_weekly_sessions(
        system.fetcher,
        trainer.id,
        start_date=start_date,
        end_date=end_date,
        clock=system.clock,
        backup_directory=current_app.config.get("GYM_BACKUP_DIRECTORY"),
    )
    return export.as_response()


# ---------------------------------------------------------------------------
# Bookings
# ---------------------------------------------------------------------------
@bp.get("/bookings/self")
@restrict("member", "admin")
def list_own_bookings() -> Any:
    include_past = parse_flag("includePast", request.args.get("includePast"))
    bookings = get_system().list_bookings_for_member(g.principal.id, include_past=include_past)
    return jsonify({"bookings": [_booking_dict(item) for item in bookings]})


def _booking_dict(item: EnrichedBooking) -> dict:
    return {
        "id": item.booking.id,
        "sessionId": item.session.id,
        "sessionDate": item.session_date,
        "sessionTime": item.session_time,
        "activityName": item.activity.name,
        "locationName": item.location.name,
        "trainerName": item.trainer.full_name,
    }


@bp.get("/bookings/<int:booking_id>")
@restrict("member", "admin")
def get_booking(booking_id: int) -> Any:
    booking = get_system().get_booking(booking_id)
    if g.principal.role != "admin" and booking["member_id"] != g.principal.id:
        raise AuthorizationError("Access forbidden - you can only view your own bookings")
    return jsonify(
        {
            "booking": {
                "id": booking["id"],
                "memberId": booking["member_id"],
                "sessionId": booking["session_id"],
            }
        }
    )


@bp.post("/bookings")
@restrict("member", "admin")
def create_booking() -> Any:
    data = _payload()
    member_id = g.principal.id
    if g.principal.role == "admin":
        member_id = body_id(data, "memberId", required=False) or member_id
    booking = get_system().create_booking(member_id=member_id, session_id=body_id(data, "sessionId"))
    return jsonify({"message": "Booking created", "id": booking["id"]}), 201


@bp.delete("/bookings/<int:booking_id>")
@restrict("member", "admin")
def cancel_booking(booking_id: int) -> Any:
    get_system().cancel_booking(booking_id, principal=g.principal)
    return jsonify({"message": "Booking cancelled"})


@bp.get("/bookings/export/xml/history")
@restrict("member", "admin")
def export_bookings_xml() -> Any:
    only_past = parse_flag("onlyPast", request.args.get("onlyPast"))
    member = subject_principal(g.principal, "memberId")
    system = get_system()
    export = export_booking_history(
        system.fetcher,
        member,
        only_past=only_past,
        clock=system.clock,
        backup_directory=current_app.config.get("GYM_BACKUP_DIRECTORY"),
    )
    return export.as_response()


# ---------------------------------------------------------------------------
# Blogs
# ---------------------------------------------------------------------------
def _blog_dict(blog: dict) -> dict:
    return {
        "id": blog["id"],
        "title": blog["title"],
        "content": blog["content"],
        "authorId": blog["author_id"],
        "authorName": blog["author_name"],
        "createdAt": blog["created_at"],
    }


@bp.get("/blogs")
def list_blogs() -> Any:
    return jsonify({"blogs": [_blog_dict(blog) for blog in get_system().list_blogs()]})


@bp.post("/blogs")
@restrict()
def create_blog() -> Any:
    data = _payload()
    blog = get_system().create_blog(
        author_id=g.principal.id,
        title=body_text(data, "title"),
        content=body_text(data, "content"),
    )
    return jsonify({"message": "Blog created", "blog": _blog_dict(blog)}), 201


@bp.patch("/blogs/<int:blog_id>")
@restrict()
def update_blog(blog_id: int) -> Any:
    system = get_system()
    current = system.get_blog(blog_id)
    data = _payload()
    blog = system.update_blog(
        blog_id,
        principal=g.principal,
        title=body_text(data, "title", required=False) or current["title"],
        content=body_text(data, "content", required=False) or current["content"],
    )
    return jsonify({"message": "Blog updated", "blog": _blog_dict(blog)})


@bp.delete("/blogs/<int:blog_id>")
@restrict()
def delete_blog(blog_id: int) -> Any:
    get_system().delete_blog(blog_id, principal=g.principal)
    return jsonify({"message": "Blog deleted"})


__all__ = ["bp", "get_system", "parse_date_arg", "parse_flag", "restrict"]
