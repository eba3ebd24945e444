"""Flask application providing the High Street Gym web UI and REST API."""

from __future__ import annotations

from typing import Any

from flask import (
    Flask,
    flash,
    redirect,
    render_template,
    request,
    session,
    url_for,
)

from highstreetgym import config
from highstreetgym.gym.errors import (
    AuthorizationError,
    GymError,
    NotFound,
    PrincipalForbidden,
    PrincipalMissing,
    ValidationError,
)
from highstreetgym.gym.exporters import export_booking_history, export_weekly_sessions
from highstreetgym.gym.records import Principal
from highstreetgym.gym.system import ROLES, GymSystem
from highstreetgym.webapp.api import EXTENSION_KEY, bp as api_bp, parse_date_arg, parse_flag


def create_app(test_config: dict | None = None) -> Flask:
    """Create and configure the Flask application."""

    app = Flask(
        __name__,
        template_folder="templates",
    )
    app.config.from_mapping(config.defaults())
    if test_config:
        app.config.update(test_config)
    config.configure_logging(app.config["GYM_LOG_LEVEL"])

    system = GymSystem(app.config["GYM_DATABASE_PATH"], timezone=app.config["GYM_TIMEZONE"])
    app.extensions[EXTENSION_KEY] = system
    app.register_blueprint(api_bp)

    def current_user() -> Principal | None:
        user_id = session.get("user_id")
        if user_id is None:
            return None
        try:
            return system.principal(user_id)
        except NotFound:
            session.clear()
            return None

    def require_user(*roles: str) -> Principal:
        user = current_user()
        if user is None:
            raise PrincipalMissing("Please log in to continue")
        if roles and user.role not in roles:
            raise PrincipalForbidden()
        return user

    @app.context_processor
    def inject_navigation() -> dict[str, Any]:
        return {
            "current_user": current_user(),
            "current_year": system.clock.today().year,
        }

    @app.errorhandler(GymError)
    def gym_error(exc: GymError) -> Any:
        return (
            render_template("status.html", status_code=exc.status_code, message=str(exc)),
            exc.status_code,
        )

    @app.get("/")
    def index() -> Any:
        return render_template(
            "home.html",
            sessions=system.list_sessions()[:5],
            blogs=system.list_blogs()[:3],
        )

    @app.route("/login", methods=["GET", "POST"])
    def login() -> Any:
        if request.method == "POST":
            try:
                user = system.verify_credentials(
                    email=request.form.get("email", "").strip(),
                    password=request.form.get("password", ""),
                )
                session.clear()
                session["user_id"] = user["id"]
                flash(f"Welcome back, {user['first_name']}", "success")
                return redirect(url_for("sessions"))
            except ValidationError as exc:
                flash(str(exc), "error")
        return render_template("login.html")

    @app.route("/logout", methods=["GET", "POST"])
    def logout() -> Any:
        session.clear()
        flash("You have been logged out", "success")
        return redirect(url_for("login"))

    @app.route("/sessions", methods=["GET", "POST"])
    def sessions() -> Any:
        if request.method == "POST":
            trainer = require_user("trainer", "admin")
            try:
                system.create_session(
                    activity_id=request.form.get("activity_id", type=int),
                    location_id=request.form.get("location_id", type=int),
                    trainer_id=trainer.id,
                    session_date=request.form.get("session_date", ""),
                    session_time=request.form.get("session_time", ""),
                )
                flash("Session created", "success")
                return redirect(url_for("sessions"))
            except ValidationError as exc:
                flash(str(exc), "error")
        return render_template(
            "sessions.html",
            sessions=system.list_sessions(),
            activities=system.list_activities(),
            locations=system.list_locations(),
        )

    @app.route("/sessions/<int:session_id>", methods=["GET", "POST"])
    def session_detail(session_id: int) -> Any:
        if request.method == "POST":
            trainer = require_user("trainer", "admin")
            try:
                system.update_session(
                    session_id,
                    principal=trainer,
                    activity_id=request.form.get("activity_id", type=int),
                    location_id=request.form.get("location_id", type=int),
                    session_date=request.form.get("session_date", "").strip() or None,
                    session_time=request.form.get("session_time", "").strip() or None,
                )
                flash("Session updated", "success")
                return redirect(url_for("session_detail", session_id=session_id))
            except ValidationError as exc:
                flash(str(exc), "error")
        return render_template(
            "session_detail.html",
            item=system.get_session_details(session_id),
            activities=system.list_activities(),
            locations=system.list_locations(),
        )

    @app.post("/sessions/<int:session_id>/delete")
    def delete_session(session_id: int) -> Any:
        trainer = require_user("trainer", "admin")
        system.delete_session(session_id, principal=trainer)
        flash("Session deleted", "success")
        return redirect(url_for("sessions"))

    @app.post("/sessions/<int:session_id>/book")
    def book_session(session_id: int) -> Any:
        member = require_user("member", "admin")
        try:
            system.create_booking(member_id=member.id, session_id=session_id)
            flash("Session booked", "success")
        except ValidationError as exc:
            flash(str(exc), "error")
        return redirect(url_for("bookings"))

    @app.get("/bookings")
    def bookings() -> Any:
        member = require_user("member", "admin")
        include_past = request.args.get("history") is not None
        return render_template(
            "bookings.html",
            bookings=system.list_bookings_for_member(member.id, include_past=include_past),
            include_past=include_past,
        )

    @app.get("/bookings/<int:booking_id>")
    def booking_detail(booking_id: int) -> Any:
        member = require_user("member", "admin")
        item = system.get_booking_details(booking_id)
        if member.role != "admin" and item.member.id != member.id:
            raise AuthorizationError("Bookings can only be viewed by their member")
        return render_template("booking_detail.html", item=item)

    @app.post("/bookings/<int:booking_id>/cancel")
    def cancel_booking(booking_id: int) -> Any:
        member = require_user("member", "admin")
        system.cancel_booking(booking_id, principal=member)
        flash("Booking cancelled", "success")
        return redirect(url_for("bookings"))

    # ------------------------------------------------------------------
    # Administration
    # ------------------------------------------------------------------
    @app.route("/users", methods=["GET", "POST"])
    def users() -> Any:
        require_user("admin")
        if request.method == "POST":
            try:
                system.register_user(
                    email=request.form.get("email", "").strip(),
                    password=request.form.get("password", ""),
                    role=request.form.get("role", "member"),
                    first_name=request.form.get("first_name", ""),
                    last_name=request.form.get("last_name", ""),
                )
                flash("User created", "success")
                return redirect(url_for("users"))
            except ValidationError as exc:
                flash(str(exc), "error")
        role = request.args.get("role") or None
        return render_template("users.html", users=system.list_users(role=role), roles=ROLES, role=role)

    @app.route("/users/<int:user_id>", methods=["GET", "POST"])
    def user_detail(user_id: int) -> Any:
        require_user("admin")
        if request.method == "POST":
            try:
                system.update_user(
                    user_id,
                    first_name=request.form.get("first_name", "").strip() or None,
                    last_name=request.form.get("last_name", "").strip() or None,
                    role=request.form.get("role") or None,
                    password=request.form.get("password") or None,
                )
                flash("User updated", "success")
                return redirect(url_for("user_detail", user_id=user_id))
            except ValidationError as exc:
                flash(str(exc), "error")
        return render_template("user_detail.html", user=system.get_user(user_id), roles=ROLES)

    @app.post("/users/<int:user_id>/delete")
    def delete_user(user_id: int) -> Any:
        admin = require_user("admin")
        if admin.id == user_id:
            flash("You cannot delete your own account", "error")
            return redirect(url_for("user_detail", user_id=user_id))
        system.delete_user(user_id)
        flash("User deleted", "success")
        return redirect(url_for("users"))

    @app.route("/activities", methods=["GET", "POST"])
    def activities() -> Any:
        require_user("admin")
        if request.method == "POST":
            try:
                system.create_activity(
                    name=request.form.get("name", ""),
                    description=request.form.get("description", ""),
                )
                flash("Activity created", "success")
                return redirect(url_for("activities"))
            except ValidationError as exc:
                flash(str(exc), "error")
        return render_template("activities.html", activities=system.list_activities())

    @app.route("/activities/<int:activity_id>", methods=["GET", "POST"])
    def activity_detail(activity_id: int) -> Any:
        require_user("admin")
        if request.method == "POST":
            try:
                system.update_activity(
                    activity_id,
                    name=request.form.get("name", ""),
                    description=request.form.get("description", ""),
                )
                flash("Activity updated", "success")
                return redirect(url_for("activity_detail", activity_id=activity_id))
            except ValidationError as exc:
                flash(str(exc), "error")
        return render_template("activity_detail.html", activity=system.get_activity(activity_id))

    @app.post("/activities/<int:activity_id>/delete")
    def delete_activity(activity_id: int) -> Any:
        require_user("admin")
        system.delete_activity(activity_id)
        flash("Activity deleted", "success")
        return redirect(url_for("activities"))

    @app.route("/locations", methods=["GET", "POST"])
    def locations() -> Any:
        require_user("admin")
        if request.method == "POST":
            try:
                system.create_location(
                    name=request.form.get("name", ""),
                    address=request.form.get("address", ""),
                )
                flash("Location created", "success")
                return redirect(url_for("locations"))
            except ValidationError as exc:
                flash(str(exc), "error")
        return render_template("locations.html", locations=system.list_locations())

    @app.route("/locations/<int:location_id>", methods=["GET", "POST"])
    def location_detail(location_id: int) -> Any:
        require_user("admin")
        if request.method == "POST":
            try:
                system.update_location(
                    location_id,
                    name=request.form.get("name", ""),
                    address=request.form.get("address", ""),
                )
                flash("Location updated", "success")
                return redirect(url_for("location_detail", location_id=location_id))
            except ValidationError as exc:
                flash(str(exc), "error")
        return render_template("location_detail.html", location=system.get_location(location_id))

    @app.post("/locations/<int:location_id>/delete")
    def delete_location(location_id: int) -> Any:
        require_user("admin")
        system.delete_location(location_id)
        flash("Location deleted", "success")
        return redirect(url_for("locations"))

    @app.get("/sessions/export/xml/weekly")
    def export_sessions_xml() -> Any:
        trainer = require_user("trainer", "admin")
        export = export_weekly_sessions(
            system.fetcher,
            trainer.id,
            start_date=parse_date_arg("startDate", request.args.get("startDate")),
            end_date=parse_date_arg("endDate", request.args.get("endDate")),
            clock=system.clock,
            backup_directory=app.config.get("GYM_BACKUP_DIRECTORY"),
        )
        return export.as_response()

    @app.get("/bookings/export/xml/history")
    def export_bookings_xml() -> Any:
        member = require_user("member", "admin")
        export = export_booking_history(
            system.fetcher,
            member,
            only_past=parse_flag("onlyPast", request.args.get("onlyPast")),
            clock=system.clock,
            backup_directory=app.config.get("GYM_BACKUP_DIRECTORY"),
        )
        return export.as_response()

    return app


__all__ = ["create_app"]
