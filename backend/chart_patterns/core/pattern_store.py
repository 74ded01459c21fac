"""
Pattern storage: durable create/list of pattern records.

Scripts are scanned with the sandbox deny-list before anything is written,
independently of the scan the executor repeats at evaluation time. Creates are
serialized through a process-wide lock and committed in a single transaction,
so ids never collide and list() never sees a half-written row.
"""

import logging
import threading

from pydantic import ValidationError
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from chart_patterns.core.config import settings
from chart_patterns.core.db import engine as main_engine
from chart_patterns.engines.script.errors import ScriptRejectedError
from chart_patterns.engines.script.sandbox import check_script
from chart_patterns.models import Pattern
from chart_patterns.schemas import PatternCreate

_log = logging.getLogger(__name__)

_write_lock = threading.Lock()


class PatternValidationError(ValueError):
    """Blank required field or script rejected by the static scan. Nothing is persisted."""

    pass


class StorageError(RuntimeError):
    """Backing database failed; previously committed records are untouched."""

    pass


def _format_validation_error(exc: ValidationError) -> str:
    messages = []
    for err in exc.errors():
        loc = ".".join(str(part) for part in err.get("loc", []))
        msg = err.get("msg", "Invalid value")
        messages.append(f"{loc}: {msg}" if loc else msg)
    return "; ".join(messages)


class PatternStore:
    """Create/list pattern records in the SQLModel database."""

    def __init__(self, engine: Engine | None = None, *, max_script_length: int | None = None) -> None:
        self._engine = engine or main_engine
        self._max_script_length = (
            settings.SCRIPT_MAX_LENGTH if max_script_length is None else max_script_length
        )

    def create(
        self,
        name: str,
        script: str,
        description: str | None = "",
        examples: str | None = "",
    ) -> str:
        """Validate and persist a new pattern; return its opaque id."""
        try:
            body = PatternCreate.model_validate(
                {
                    "name": name,
                    "script": script,
                    "description": description,
                    "examples": examples,
                }
            )
        except ValidationError as e:
            raise PatternValidationError(_format_validation_error(e)) from e
        try:
            check_script(body.script, max_length=self._max_script_length)
        except ScriptRejectedError as e:
            raise PatternValidationError(f"Security Error: {e}") from e

        pattern = Pattern(
            name=body.name,
            script=body.script,
            description=body.description or "",
            examples=body.examples or "",
        )
        pattern_id = pattern.id
        with _write_lock:
            try:
                with Session(self._engine) as session:
                    session.add(pattern)
                    session.commit()
            except SQLAlchemyError as e:
                _log.error("Failed to store pattern %r: %s", body.name, e, exc_info=True)
                raise StorageError(f"Failed to store pattern: {e}") from e
        _log.info("Created pattern %r (id=%s)", body.name, pattern_id)
        return pattern_id

    def list(self) -> list[Pattern]:
        """All committed patterns in creation order."""
        try:
            with Session(self._engine) as session:
                return list(session.exec(select(Pattern).order_by(Pattern.seq)).all())
        except SQLAlchemyError as e:
            _log.error("Failed to list patterns: %s", e, exc_info=True)
            raise StorageError(f"Failed to list patterns: {e}") from e

    def get(self, pattern_id: str) -> Pattern | None:
        try:
            with Session(self._engine) as session:
                return session.exec(select(Pattern).where(Pattern.id == pattern_id)).first()
        except SQLAlchemyError as e:
            _log.error("Failed to load pattern %s: %s", pattern_id, e, exc_info=True)
            raise StorageError(f"Failed to load pattern: {e}") from e
