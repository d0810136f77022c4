# workout_tracker.py
# =============================================================================
# Workout Tracker API — workouts, exercise catalog, logged sets
# (FastAPI + SQLAlchemy 2.x async, Pydantic v2)
# One statement per endpoint; deletes cascade child-first in one transaction.
# =============================================================================

from __future__ import annotations

import datetime as dt
import logging
import math
import os
import traceback
from contextlib import asynccontextmanager
from pathlib import Path as OSPath
from typing import Any, AsyncGenerator, Dict, List, Optional, Tuple

import uvicorn
from dotenv import load_dotenv
from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi import Path as FPath
from fastapi.responses import HTMLResponse, JSONResponse, PlainTextResponse
from pydantic import BaseModel, ConfigDict, field_validator
from sqlalchemy import (
    Date,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    asc,
    delete,
    event,
    func,
    select,
    text,
    update,
)
from sqlalchemy.engine import URL
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.sql.expression import Executable

load_dotenv()

# -----------------------------------------------------------------------------
# Logging
# -----------------------------------------------------------------------------
logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(levelname)s %(message)s",
)
log = logging.getLogger("workout-tracker-api")

# -----------------------------------------------------------------------------
# DB connection
#   DB_HOST set   -> PostgreSQL via asyncpg (DB_PORT, DB_USER, DB_PASSWORD, DB_NAME)
#   otherwise     -> SQLite file at WORKOUT_DB, or ./workout_tracker.db
# -----------------------------------------------------------------------------
_db_host = os.getenv("DB_HOST")
_db_port = int(os.getenv("DB_PORT", "5432"))
_db_user = os.getenv("DB_USER", "postgres")
_db_pass = os.getenv("DB_PASSWORD", "")
_db_name = os.getenv("DB_NAME", "workout_tracker")

PORT = int(os.getenv("PORT", "3000"))

if _db_host:
    DB_URL = URL.create(
        "postgresql+asyncpg",
        username=_db_user,
        password=_db_pass,
        host=_db_host,
        port=_db_port,
        database=_db_name,
    )
    engine = create_async_engine(DB_URL, echo=False, pool_pre_ping=True)
    log.info(f"Using PostgreSQL (async): {_db_host}:{_db_port}/{_db_name}")
else:
    DB_PATH = os.getenv("WORKOUT_DB") or str(
        (OSPath(__file__).parent / "workout_tracker.db").resolve()
    )
    engine = create_async_engine(f"sqlite+aiosqlite:///{DB_PATH}", echo=False)
    log.info(f"Using SQLite (async): {DB_PATH}")

    # SQLite ignores foreign keys unless asked, per connection
    @event.listens_for(engine.sync_engine, "connect")
    def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """Store handle injected into every handler; one session per request."""
    async with async_session() as s:
        yield s


# -----------------------------------------------------------------------------
# SQLAlchemy models
# No ON DELETE CASCADE: the delete endpoints remove children themselves.
# -----------------------------------------------------------------------------
# Largest value an Integer column holds on every supported backend
INT_MAX = 2_147_483_647


class Base(DeclarativeBase):
    pass


class Workout(Base):
    __tablename__ = "workouts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    date: Mapped[Optional[dt.date]] = mapped_column(Date, nullable=True, default=dt.date.today)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)


class Exercise(Base):
    __tablename__ = "exercises"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    equipment: Mapped[Optional[str]] = mapped_column(
        String(255), nullable=True, default="Barbell", server_default="Barbell"
    )
    muscle_group: Mapped[Optional[str]] = mapped_column(
        String(255), nullable=True, default="Full Body", server_default="Full Body"
    )


class WorkoutExercise(Base):
    __tablename__ = "workout_exercises"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    workout_id: Mapped[int] = mapped_column(Integer, ForeignKey("workouts.id"), nullable=False)
    exercise_id: Mapped[int] = mapped_column(Integer, ForeignKey("exercises.id"), nullable=False)


class WorkoutSet(Base):
    __tablename__ = "sets"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    workout_exercises_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("workout_exercises.id"), nullable=False
    )
    reps: Mapped[int] = mapped_column(Integer, nullable=False)
    weight: Mapped[float] = mapped_column(Float, nullable=False)


# name, equipment, muscle_group
DEFAULT_EXERCISES: List[Tuple[str, str, str]] = [
    ("Squat", "Barbell", "Legs"),
    ("Bench Press", "Barbell", "Chest"),
    ("Bent Over Row", "Barbell", "Back"),
    ("Overhead Press", "Barbell", "Shoulders"),
    ("Deadlift", "Barbell", "Back"),
]


# -----------------------------------------------------------------------------
# Startup: create tables & seed the exercise catalog
# -----------------------------------------------------------------------------
async def _init_db() -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    async with async_session() as s:
        result = await s.execute(select(func.count()).select_from(Exercise))
        if result.scalar_one() == 0:
            s.add_all(
                Exercise(name=name, equipment=equipment, muscle_group=muscle_group)
                for name, equipment, muscle_group in DEFAULT_EXERCISES
            )
            await s.commit()
            log.info(f"Seeded exercise catalog with {len(DEFAULT_EXERCISES)} exercises")


# -----------------------------------------------------------------------------
# Pydantic schemas
# -----------------------------------------------------------------------------
class HealthOut(BaseModel):
    ok: bool = True
    db_connected: bool = True
    db_type: str
    timestamp: str


class WorkoutIn(BaseModel):
    name: str
    date: Optional[dt.date] = None

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("workout name cannot be empty")
        return v


class WorkoutOut(BaseModel):
    id: int
    name: str
    date: Optional[dt.date] = None
    notes: Optional[str] = None
    model_config = ConfigDict(from_attributes=True)


class NotesIn(BaseModel):
    notes: Optional[str] = None


class ExerciseOut(BaseModel):
    id: int
    name: Optional[str] = None
    equipment: Optional[str] = None
    muscle_group: Optional[str] = None
    model_config = ConfigDict(from_attributes=True)


class WorkoutDetailRowOut(BaseModel):
    """One logged set of one exercise; reps/weight are null until a set is logged."""
    workout_exercise_id: int
    exercise_name: Optional[str] = None
    reps: Optional[int] = None
    weight: Optional[float] = None


# -----------------------------------------------------------------------------
# App (with lifespan)
# -----------------------------------------------------------------------------
@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    await _init_db()
    yield
    await engine.dispose()


app = FastAPI(
    title="Workout Tracker API",
    description="Log workouts, the exercises performed in them, and every set.",
    version="1.0.0",
    lifespan=lifespan,
)


@app.exception_handler(Exception)
async def _global_exception_handler(request: Request, exc: Exception):
    tb = traceback.format_exc()
    log.error(f"Unhandled error on {request.method} {request.url.path}: {exc}\n{tb}")
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


# -----------------------------------------------------------------------------
# Helpers
# -----------------------------------------------------------------------------
def _db_type() -> str:
    """Return a safe description of the DB type (no credentials)."""
    if _db_host:
        return f"PostgreSQL ({_db_host})"
    return "SQLite"


def _store_error(action: str, exc: Exception) -> HTTPException:
    """Log the driver error server-side and hand the client a generic 500."""
    log.error(f"Error {action}: {exc}")
    return HTTPException(500, f"Error {action}")


async def _run_cascade(s: AsyncSession, steps: List[Tuple[str, Executable]]) -> int:
    """Run dependent deletes in order inside one transaction.

    ``steps`` is ordered child-first; the last statement deletes the parent row.
    Returns the parent's rowcount. Nothing is committed when a step fails or
    when the parent row does not exist, and no step after a failure is issued.
    """
    deleted = 0
    for action, stmt in steps:
        try:
            result = await s.execute(stmt, execution_options={"synchronize_session": False})
        except SQLAlchemyError as e:
            await s.rollback()
            raise _store_error(action, e)
        deleted = result.rowcount
    if not deleted:
        await s.rollback()
        return 0
    try:
        await s.commit()
    except SQLAlchemyError as e:
        await s.rollback()
        raise _store_error("committing delete", e)
    return deleted


# -----------------------------------------------------------------------------
# Validation guards (run before the guarded handlers touch the store)
# -----------------------------------------------------------------------------
def _is_number(value: Any) -> bool:
    # bool is an int subclass but not a JSON number; NaN/Infinity slip through json.loads
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    try:
        return math.isfinite(value)
    except OverflowError:
        # int too large to convert to float
        return False


def _fits_integer_column(value: Any) -> bool:
    return _is_number(value) and abs(value) <= INT_MAX


async def _json_body(request: Request) -> Dict[str, Any]:
    try:
        body = await request.json()
    except ValueError:
        raise HTTPException(400, "Request body must be valid JSON.")
    if not isinstance(body, dict):
        raise HTTPException(400, "Request body must be a JSON object.")
    return body


def validate_workout_exercise_input(
    body: Dict[str, Any] = Depends(_json_body),
) -> Dict[str, Any]:
    """Require numeric ``workout_id`` and ``exercise_id``; pass the body on unchanged."""
    for field in ("workout_id", "exercise_id"):
        if not body.get(field):
            raise HTTPException(400, f"Missing required field: {field}.")
    for field in ("workout_id", "exercise_id"):
        if not _fits_integer_column(body[field]):
            raise HTTPException(400, f"Invalid input: {field} must be a number.")
    return body


def validate_set_input(body: Dict[str, Any] = Depends(_json_body)) -> Dict[str, Any]:
    """Require ``workout_exercises_id``, ``reps`` and ``weight``; reject negatives.

    Presence is a falsy test, so 0 reps or 0 weight is reported as missing
    even though a failed attempt could legitimately be logged at 0 reps.
    """
    for field in ("workout_exercises_id", "reps", "weight"):
        if not body.get(field):
            raise HTTPException(400, f"Missing required field: {field}")
    for field in ("workout_exercises_id", "reps", "weight"):
        if not _is_number(body[field]):
            raise HTTPException(400, f"Invalid input: {field} must be a number.")

    reps, weight = body["reps"], body["weight"]
    if reps < 0:
        raise HTTPException(400, "Reps must be at least 1 or more.")
    if isinstance(reps, float) and not reps.is_integer():
        raise HTTPException(400, "Invalid input: reps must be a whole number.")
    if weight < 0:
        raise HTTPException(400, "Weight must be at least 1 lbs or more.")
    for field in ("workout_exercises_id", "reps"):
        if not _fits_integer_column(body[field]):
            raise HTTPException(400, f"Invalid input: {field} must be a number.")
    return body


# -----------------------------------------------------------------------------
# Health / Root
# -----------------------------------------------------------------------------
@app.get("/", response_class=PlainTextResponse)
async def root() -> str:
    return "Hello from the Workout Tracker API!"


@app.get("/health", response_model=HealthOut)
async def health(s: AsyncSession = Depends(get_session)) -> HealthOut:
    db_connected = False
    try:
        await s.execute(text("SELECT 1"))
        db_connected = True
    except SQLAlchemyError as e:
        log.error(f"Health check DB query failed: {e}")
    return HealthOut(
        ok=db_connected,
        db_connected=db_connected,
        db_type=_db_type(),
        timestamp=dt.datetime.now(dt.timezone.utc).isoformat(),
    )


# -----------------------------------------------------------------------------
# Workouts
# -----------------------------------------------------------------------------
@app.get("/workouts", response_model=List[WorkoutOut])
async def list_workouts(s: AsyncSession = Depends(get_session)) -> List[WorkoutOut]:
    try:
        result = await s.execute(select(Workout).order_by(asc(Workout.id)))
        rows = result.scalars().all()
    except SQLAlchemyError as e:
        raise _store_error("fetching workouts", e)
    return [WorkoutOut.model_validate(w) for w in rows]


@app.post("/workouts", status_code=201, response_class=PlainTextResponse)
async def create_workout(w: WorkoutIn, s: AsyncSession = Depends(get_session)) -> str:
    try:
        s.add(Workout(**w.model_dump(exclude_none=True)))
        await s.commit()
    except SQLAlchemyError as e:
        await s.rollback()
        raise _store_error("adding workout", e)
    return f'New workout "{w.name}" added!'


@app.get("/workouts/{workout_id}", response_model=List[WorkoutDetailRowOut])
async def workout_detail(
    workout_id: int = FPath(..., ge=1, le=INT_MAX), s: AsyncSession = Depends(get_session)
) -> List[WorkoutDetailRowOut]:
    """Every exercise in the workout with its sets; exercises without sets still appear."""
    stmt = (
        select(
            WorkoutExercise.id.label("workout_exercise_id"),
            Exercise.name.label("exercise_name"),
            WorkoutSet.reps,
            WorkoutSet.weight,
        )
        .select_from(WorkoutExercise)
        .join(Exercise, WorkoutExercise.exercise_id == Exercise.id)
        .outerjoin(WorkoutSet, WorkoutExercise.id == WorkoutSet.workout_exercises_id)
        .where(WorkoutExercise.workout_id == workout_id)
        .order_by(asc(WorkoutExercise.id), asc(WorkoutSet.id))
    )
    try:
        result = await s.execute(stmt)
        rows = result.all()
    except SQLAlchemyError as e:
        raise _store_error("fetching exercise and set details", e)
    return [WorkoutDetailRowOut(**row._mapping) for row in rows]


@app.get("/workouts/{workout_id}/exercises", response_model=List[ExerciseOut])
async def workout_exercises(
    workout_id: int = FPath(..., ge=1, le=INT_MAX), s: AsyncSession = Depends(get_session)
) -> List[ExerciseOut]:
    stmt = (
        select(Exercise)
        .join(WorkoutExercise, WorkoutExercise.exercise_id == Exercise.id)
        .where(WorkoutExercise.workout_id == workout_id)
        .order_by(asc(WorkoutExercise.id))
    )
    try:
        result = await s.execute(stmt)
        rows = result.scalars().all()
    except SQLAlchemyError as e:
        raise _store_error("fetching exercises", e)
    return [ExerciseOut.model_validate(e) for e in rows]


@app.patch("/workouts/{workout_id}/notes", response_class=PlainTextResponse)
async def update_workout_notes(
    body: NotesIn,
    workout_id: int = FPath(..., ge=1, le=INT_MAX),
    s: AsyncSession = Depends(get_session),
) -> str:
    stmt = (
        update(Workout)
        .where(Workout.id == workout_id)
        .values(notes=body.notes)
        .execution_options(synchronize_session=False)
    )
    try:
        result = await s.execute(stmt)
        await s.commit()
    except SQLAlchemyError as e:
        await s.rollback()
        raise _store_error("adding/updating workout notes", e)
    if result.rowcount == 0:
        raise HTTPException(404, "Workout not found.")
    return "Workout notes updated successfully"


@app.delete("/workouts/{workout_id}", response_class=PlainTextResponse)
async def delete_workout(
    workout_id: int = FPath(..., ge=1, le=INT_MAX), s: AsyncSession = Depends(get_session)
) -> str:
    """Delete a workout along with its workout_exercises and their sets."""
    workout_exercise_ids = select(WorkoutExercise.id).where(
        WorkoutExercise.workout_id == workout_id
    )
    deleted = await _run_cascade(s, [
        (
            f"deleting sets for workout {workout_id}",
            delete(WorkoutSet).where(WorkoutSet.workout_exercises_id.in_(workout_exercise_ids)),
        ),
        (
            f"deleting exercises for workout {workout_id}",
            delete(WorkoutExercise).where(WorkoutExercise.workout_id == workout_id),
        ),
        (
            f"deleting workout {workout_id}",
            delete(Workout).where(Workout.id == workout_id),
        ),
    ])
    if not deleted:
        raise HTTPException(404, "Workout not found.")
    return f"Successfully deleted workout {workout_id} and its exercises!"


# -----------------------------------------------------------------------------
# Exercise catalog
# -----------------------------------------------------------------------------
@app.get("/exercises", response_model=List[ExerciseOut])
async def list_exercises(s: AsyncSession = Depends(get_session)) -> List[ExerciseOut]:
    try:
        result = await s.execute(select(Exercise).order_by(asc(Exercise.id)))
        rows = result.scalars().all()
    except SQLAlchemyError as e:
        raise _store_error("getting exercises list", e)
    return [ExerciseOut.model_validate(e) for e in rows]


# -----------------------------------------------------------------------------
# Workout exercises & sets (guarded)
# -----------------------------------------------------------------------------
@app.post("/workout_exercises", status_code=201, response_class=PlainTextResponse)
async def add_workout_exercise(
    body: Dict[str, Any] = Depends(validate_workout_exercise_input),
    s: AsyncSession = Depends(get_session),
) -> str:
    workout_id, exercise_id = body["workout_id"], body["exercise_id"]
    try:
        s.add(WorkoutExercise(workout_id=workout_id, exercise_id=exercise_id))
        await s.commit()
    except SQLAlchemyError as e:
        await s.rollback()
        raise _store_error("adding exercise to workout", e)
    return f"Exercise with ID {exercise_id} added to workout with ID {workout_id}"


@app.delete("/workout_exercises/{workout_exercise_id}", response_class=PlainTextResponse)
async def delete_workout_exercise(
    workout_exercise_id: int = FPath(..., ge=1, le=INT_MAX),
    s: AsyncSession = Depends(get_session),
) -> str:
    """Remove one exercise from a workout, together with the sets logged for it."""
    deleted = await _run_cascade(s, [
        (
            f"deleting sets for workout_exercise {workout_exercise_id}",
            delete(WorkoutSet).where(WorkoutSet.workout_exercises_id == workout_exercise_id),
        ),
        (
            f"deleting exercise for workout_exercise {workout_exercise_id}",
            delete(WorkoutExercise).where(WorkoutExercise.id == workout_exercise_id),
        ),
    ])
    if not deleted:
        raise HTTPException(404, "Workout exercise not found.")
    return f"Successfully deleted exercise and sets for workout exercise {workout_exercise_id}"


@app.post("/sets", status_code=201)
async def add_set(
    body: Dict[str, Any] = Depends(validate_set_input),
    s: AsyncSession = Depends(get_session),
) -> str:
    workout_exercises_id = body["workout_exercises_id"]
    try:
        s.add(
            WorkoutSet(
                workout_exercises_id=workout_exercises_id,
                reps=int(body["reps"]),
                weight=float(body["weight"]),
            )
        )
        await s.commit()
    except SQLAlchemyError as e:
        await s.rollback()
        raise _store_error("adding set to exercise", e)
    return f"Added set to workout exercise ID {workout_exercises_id}"


# -----------------------------------------------------------------------------
# Front-end shell (static; no data fetching)
# -----------------------------------------------------------------------------
def render_header() -> str:
    return "<header><h1>Workout Tracker</h1></header>"


def render_footer() -> str:
    return "<footer><p>Workout Tracker</p></footer>"


def render_app() -> str:
    return (
        "<!DOCTYPE html>\n"
        "<html>\n<head><meta charset=\"utf-8\"><title>Workout Tracker</title></head>\n"
        "<body>\n<div>\n"
        f"{render_header()}\n"
        "<p>Track your workouts easily and effectively!</p>\n"
        f"{render_footer()}\n"
        "</div>\n</body>\n</html>\n"
    )


@app.get("/app", response_class=HTMLResponse)
async def app_shell() -> str:
    return render_app()


if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=PORT)
