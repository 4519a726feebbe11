from datetime import datetime, timedelta

from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session, sessionmaker

from database import Base
from models import RequestLog, utcnow
from scheduler import SchedulerManager
from services import LogService


def test_logs_are_listed_newest_first() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        service = LogService(session)
        service.record("http_request", method="GET", path="/health", status_code=200)
        service.record("endpoint_access", path="/api/users", meta={"id": 1})

        entries = service.list_recent()
        assert [e.message for e in entries] == ["endpoint_access", "http_request"]
        assert entries[0].meta == {"id": 1}


def test_prune_removes_only_old_entries() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        session.add_all(
            [
                RequestLog(message="old", created_at=datetime(2025, 1, 1, 0, 0)),
                RequestLog(message="fresh", created_at=datetime(2025, 3, 1, 0, 0)),
            ]
        )
        session.commit()

        deleted = LogService(session).prune(datetime(2025, 2, 1))
        assert deleted == 1
        assert [e.message for e in session.scalars(select(RequestLog))] == ["fresh"]


def test_scheduler_job_prunes_by_retention() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    factory = sessionmaker(bind=engine)

    with factory() as session:
        session.add_all(
            [
                RequestLog(message="stale", created_at=utcnow() - timedelta(days=90)),
                RequestLog(message="recent", created_at=utcnow()),
            ]
        )
        session.commit()

    manager = SchedulerManager(session_factory=factory)
    manager.retention_days = 30
    manager._run_job("test")

    with factory() as session:
        assert [e.message for e in session.scalars(select(RequestLog))] == ["recent"]

    manager.retention_days = 0
    manager._run_job("test")
