"""FastAPI application — JSON endpoints for classroom bookings.

Endpoints:

  GET    /health                                  Health check
  GET    /api/catalog                             Rooms, time slots, weekdays
  POST   /api/sessions                            Sign a teacher in, or return their open session (service token)
  GET    /api/sessions                            List active sessions (service token)
  GET    /api/sessions/{sid}                      Session summary
  DELETE /api/sessions/{sid}                      Sign out
  GET    /api/sessions/{sid}/availability         Day grid (?date=YYYY-MM-DD)
  GET    /api/sessions/{sid}/recurring-availability  Weekly grid (?day=Monday)
  GET    /api/sessions/{sid}/bookings             The teacher's own bookings
  POST   /api/sessions/{sid}/bookings             Create a one-time booking
  DELETE /api/sessions/{sid}/bookings/{id}        Delete an own booking
  POST   /api/sessions/{sid}/recurring-bookings   Create a weekly booking
  DELETE /api/sessions/{sid}/recurring-bookings/{id}
  POST   /api/sessions/{sid}/recurring-bookings/{id}/exceptions         Cancel a date
  DELETE /api/sessions/{sid}/recurring-bookings/{id}/exceptions/{date}  Restore it
  POST   /api/admin/notifications/test            Send a test email (service token)

Each session watches the store and runs its own cleanup sweeper until it
signs out or the application shuts down.
"""

from __future__ import annotations

from dotenv import load_dotenv
load_dotenv()

import logging
import time
from contextlib import asynccontextmanager
from typing import Optional

# Configure root logger early so all app loggers have a handler and are
# visible when run via `uvicorn classroom_booking.app:app`.
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(name)-20s %(levelname)-7s %(message)s",
)

from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from classroom_booking import catalog
from classroom_booking.auth import require_service_token, require_session
from classroom_booking.config import Settings, settings
from classroom_booking.errors import (
    BookingConflictError,
    BookingError,
    BookingNotFoundError,
    BookingPermissionError,
    BookingValidationError,
    StoreError,
)
from classroom_booking.models import Teacher
from classroom_booking.notifier import FormspreeNotifier, Notifier
from classroom_booking.session import (
    BookingSession,
    find_teacher_session,
    get_active_sessions,
    register_session,
    unregister_session,
)
from classroom_booking.stores import BookingStore, InMemoryBookingStore

log = logging.getLogger("classroom_booking.app")

_START_TIME = time.time()

_ERROR_STATUS: dict[type[BookingError], int] = {
    BookingValidationError: 400,
    BookingPermissionError: 403,
    BookingNotFoundError: 404,
    BookingConflictError: 409,
    StoreError: 502,
}


# ── Request bodies ───────────────────────────────────────────────


class SignInRequest(BaseModel):
    teacher_id: str
    email: str
    display_name: Optional[str] = None


class BookingCreate(BaseModel):
    date: str = ""
    time: str = ""
    classroom: str = ""
    subject: str = ""
    notes: str = ""


class RecurringBookingCreate(BaseModel):
    day_of_week: str = ""
    time: str = ""
    classroom: str = ""
    subject: str = ""
    notes: str = ""


class ExceptionCreate(BaseModel):
    date: str


class TestEmailRequest(BaseModel):
    email: str


def build_store(config: Settings) -> BookingStore:
    """Instantiate the configured booking store."""
    if config.store_backend == "firestore":
        from classroom_booking.stores.firestore import FirestoreBookingStore

        return FirestoreBookingStore(
            project=config.firestore_project or None,
            service_account_path=config.google_service_account_json or None,
        )
    return InMemoryBookingStore()


def create_app(
    store: BookingStore | None = None,
    notifier: Notifier | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        for warning in settings.validate_startup():
            log.warning(warning)
        if app.state.store is None:
            app.state.store = build_store(settings)
        yield
        for session_id in list(get_active_sessions()):
            session = unregister_session(session_id)
            if session is not None:
                await session.stop()

    app = FastAPI(
        title="Classroom Booking",
        description="Classroom reservations with conflict checks and email notices",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.store = store
    app.state.notifier = notifier if notifier is not None else FormspreeNotifier(settings)

    @app.exception_handler(BookingError)
    async def booking_error_handler(request: Request, exc: BookingError) -> JSONResponse:
        status_code = next(
            (code for cls, code in _ERROR_STATUS.items() if isinstance(exc, cls)), 400
        )
        body = {"error": str(exc)}
        if isinstance(exc, BookingConflictError):
            body["kind"] = exc.kind
        return JSONResponse(body, status_code=status_code)

    # ── Health / catalog ───────────────────────────────────────

    @app.get("/health")
    async def health() -> JSONResponse:
        """Lightweight health check — confirms the event loop is responsive."""
        uptime = round(time.time() - _START_TIME, 1)
        return JSONResponse({
            "status": "ok",
            "uptime": uptime,
            "sessions": len(get_active_sessions()),
        })

    @app.get("/api/catalog")
    async def get_catalog() -> JSONResponse:
        return JSONResponse(catalog.to_dict())

    # ── Sessions ───────────────────────────────────────────────

    @app.post("/api/sessions", dependencies=[Depends(require_service_token)])
    async def sign_in(body: SignInRequest) -> JSONResponse:
        """Open a booking session for a teacher the auth provider vouched for."""
        existing = find_teacher_session(body.teacher_id)
        if existing is not None:
            log.info("Reusing session %s for teacher %s",
                     existing.session_id, body.teacher_id)
            return JSONResponse(existing.to_dict())

        teacher = Teacher(
            id=body.teacher_id, email=body.email, display_name=body.display_name
        )
        session = BookingSession(teacher, app.state.store, app.state.notifier)
        await session.start()
        register_session(session)
        return JSONResponse(session.to_dict(), status_code=201)

    @app.get("/api/sessions", dependencies=[Depends(require_service_token)])
    async def list_sessions() -> JSONResponse:
        sessions = get_active_sessions()
        return JSONResponse({
            "sessions": [s.to_dict() for s in sessions.values()],
            "count": len(sessions),
        })

    @app.get("/api/sessions/{session_id}")
    async def get_session_summary(
        session: BookingSession = Depends(require_session),
    ) -> JSONResponse:
        return JSONResponse(session.to_dict())

    @app.delete("/api/sessions/{session_id}")
    async def sign_out(session: BookingSession = Depends(require_session)) -> JSONResponse:
        unregister_session(session.session_id)
        await session.stop()
        return JSONResponse({"signed_out": True})

    # ── Availability ───────────────────────────────────────────

    @app.get("/api/sessions/{session_id}/availability")
    async def day_availability(
        date: str, session: BookingSession = Depends(require_session),
    ) -> JSONResponse:
        return JSONResponse(session.day_overview(date))

    @app.get("/api/sessions/{session_id}/recurring-availability")
    async def weekly_availability(
        day: str, session: BookingSession = Depends(require_session),
    ) -> JSONResponse:
        return JSONResponse(session.recurring_overview(day))

    # ── One-time bookings ──────────────────────────────────────

    @app.get("/api/sessions/{session_id}/bookings")
    async def my_bookings(session: BookingSession = Depends(require_session)) -> JSONResponse:
        return JSONResponse({
            "bookings": [b.model_dump(mode="json") for b in session.my_bookings()],
            "recurring_bookings": [
                r.model_dump(mode="json") for r in session.my_recurring_bookings()
            ],
        })

    @app.post("/api/sessions/{session_id}/bookings")
    async def create_booking(
        body: BookingCreate, session: BookingSession = Depends(require_session),
    ) -> JSONResponse:
        booking = await session.create_booking(
            body.date, body.time, body.classroom, body.subject, body.notes
        )
        return JSONResponse(booking.model_dump(mode="json"), status_code=201)

    @app.delete("/api/sessions/{session_id}/bookings/{booking_id}")
    async def delete_booking(
        booking_id: str, session: BookingSession = Depends(require_session),
    ) -> JSONResponse:
        await session.delete_booking(booking_id)
        return JSONResponse({"deleted": booking_id})

    # ── Recurring bookings ─────────────────────────────────────

    @app.post("/api/sessions/{session_id}/recurring-bookings")
    async def create_recurring_booking(
        body: RecurringBookingCreate, session: BookingSession = Depends(require_session),
    ) -> JSONResponse:
        recurring = await session.create_recurring_booking(
            body.day_of_week, body.time, body.classroom, body.subject, body.notes
        )
        return JSONResponse(recurring.model_dump(mode="json"), status_code=201)

    @app.delete("/api/sessions/{session_id}/recurring-bookings/{recurring_id}")
    async def delete_recurring_booking(
        recurring_id: str, session: BookingSession = Depends(require_session),
    ) -> JSONResponse:
        await session.delete_recurring_booking(recurring_id)
        return JSONResponse({"deleted": recurring_id})

    @app.post("/api/sessions/{session_id}/recurring-bookings/{recurring_id}/exceptions")
    async def cancel_occurrence(
        recurring_id: str,
        body: ExceptionCreate,
        session: BookingSession = Depends(require_session),
    ) -> JSONResponse:
        cancelled = await session.cancel_occurrence(recurring_id, body.date)
        message = (
            "Individual class cancelled successfully!"
            if cancelled
            else "This class is already cancelled"
        )
        return JSONResponse({"cancelled": cancelled, "message": message})

    @app.delete(
        "/api/sessions/{session_id}/recurring-bookings/{recurring_id}/exceptions/{date}"
    )
    async def restore_occurrence(
        recurring_id: str, date: str, session: BookingSession = Depends(require_session),
    ) -> JSONResponse:
        restored = await session.restore_occurrence(recurring_id, date)
        return JSONResponse({"restored": restored})

    # ── Admin ──────────────────────────────────────────────────

    @app.post(
        "/api/admin/notifications/test",
        dependencies=[Depends(require_service_token)],
    )
    async def test_notification(body: TestEmailRequest) -> JSONResponse:
        notifier = app.state.notifier
        if not isinstance(notifier, FormspreeNotifier):
            return JSONResponse(
                {"error": "Test emails need the Formspree notifier"}, status_code=400
            )
        result = await notifier.send_test(body.email)
        return JSONResponse(result.model_dump(), status_code=200 if result.success else 502)

    return app


# ── Module-level app instance for uvicorn ──────────────────────

app = create_app()


if __name__ == "__main__":
    import uvicorn

    log_config = uvicorn.config.LOGGING_CONFIG
    log_config["formatters"]["default"]["fmt"] = (
        "%(asctime)s %(name)-12s %(levelname)-8s %(message)s"
    )
    uvicorn.run(
        "classroom_booking.app:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_config=log_config,
    )
