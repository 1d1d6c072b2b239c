import logging
from enum import Enum

from sqlalchemy.orm import Session, sessionmaker

from relay.models import CheckRecord

logger = logging.getLogger("docrelay")


class OutcomeStatus(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"
    REJECTED_UNSUPPORTED = "rejected_unsupported"


def _as_dict(record: CheckRecord) -> dict:
    return {
        "id": record.id,
        "user_id": record.user_id,
        "file_name": record.file_name,
        "file_size": record.file_size,
        "status": record.status,
        "created_at": record.created_at,
    }


class OutcomeLog:
    """Append-only log of finished jobs, read back by the dashboard and /history."""

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    def record(self, job, status: OutcomeStatus) -> None:
        session: Session = self.session_factory()
        try:
            session.add(CheckRecord(
                user_id=job.user_id,
                file_name=job.file_name,
                file_size=job.file_size,
                status=OutcomeStatus(status).value,
            ))
            session.commit()
        finally:
            session.close()
        logger.info("Job %s for user %s finished: %s", job.job_id, job.user_id, OutcomeStatus(status).value)

    def by_user(self, user_id: int, limit: int = 50) -> list:
        session: Session = self.session_factory()
        try:
            rows = (
                session.query(CheckRecord)
                .filter(CheckRecord.user_id == user_id)
                .order_by(CheckRecord.id.desc())
                .limit(limit)
                .all()
            )
            return [_as_dict(r) for r in rows]
        finally:
            session.close()

    def recent(self, limit: int = 100) -> list:
        session: Session = self.session_factory()
        try:
            rows = session.query(CheckRecord).order_by(CheckRecord.id.desc()).limit(limit).all()
            return [_as_dict(r) for r in rows]
        finally:
            session.close()
