from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any, Optional, Sequence

from rapidfuzz.distance import Levenshtein
from sqlalchemy import delete, func, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from config import Settings, get_settings
from models import CachedReport, Cost, RequestLog, User
from periods import is_closed_month, month_window, to_reference_time
from schemas import CostIn, UserIn


logger = logging.getLogger(__name__)

ReportPayload = dict[str, Any]


class ValidationFailed(ValueError):
    pass


class DuplicateUserError(ValueError):
    pass


class UserNotFound(ValueError):
    pass


def plain_number(value: float) -> int | float:
    """Render a stored amount as a bare JSON number; integral values drop the .0."""
    number = float(value)
    if number.is_integer():
        return int(number)
    return number


def closest_category(name: str, categories: Sequence[str]) -> Optional[str]:
    best: Optional[str] = None
    best_distance: Optional[int] = None
    for category in categories:
        dist = int(Levenshtein.distance(name, category))
        if best_distance is None or dist < best_distance:
            best_distance = dist
            best = category
    if best_distance is not None and best_distance <= 2:
        return best
    return None


class UserService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def create(self, data: UserIn) -> User:
        if self.session.get(User, data.id) is not None:
            raise DuplicateUserError(f"user with id {data.id} already exists")
        user = User(
            id=data.id,
            first_name=data.first_name,
            last_name=data.last_name,
            birthday=data.birthday,
        )
        self.session.add(user)
        try:
            self.session.commit()
        except IntegrityError as exc:
            self.session.rollback()
            raise DuplicateUserError(f"user with id {data.id} already exists") from exc
        logger.info(f"user_created: id={user.id}")
        return user

    def list_all(self) -> list[User]:
        return list(self.session.scalars(select(User).order_by(User.id.asc())).all())

    def get(self, user_id: int) -> User:
        user = self.session.get(User, user_id)
        if not user:
            raise UserNotFound("user not found")
        return user

    def total_costs(self, user_id: int) -> float:
        total = self.session.execute(
            select(func.coalesce(func.sum(Cost.sum), 0)).where(Cost.userid == user_id)
        ).scalar_one()
        return float(total or 0)


class CostService:
    def __init__(self, session: Session, settings: Optional[Settings] = None) -> None:
        self.session = session
        self.settings = settings or get_settings()

    def create(self, data: CostIn, *, now: datetime) -> Cost:
        category = self._resolve_category(data.category)
        created_at = self._resolve_created_at(data.created_at, now)
        cost = Cost(
            userid=data.userid,
            description=data.description,
            category=category,
            sum=data.sum,
            created_at=created_at,
        )
        self.session.add(cost)
        self.session.commit()
        logger.info(
            f"cost_created: userid={cost.userid} category={cost.category} "
            f"created_at={cost.created_at.isoformat()}"
        )
        return cost

    def _resolve_category(self, name: str) -> str:
        categories = self.settings.categories
        if name in categories:
            return name
        message = f"category must be one of: {', '.join(categories)}"
        suggestion = closest_category(name, categories)
        if suggestion:
            message = f"{message} (did you mean '{suggestion}'?)"
        raise ValidationFailed(message)

    def _resolve_created_at(self, value: Optional[datetime], now: datetime) -> datetime:
        if value is None:
            return now
        created_at = to_reference_time(value, self.settings.timezone)
        tolerance = timedelta(seconds=self.settings.created_at_tolerance_secs)
        if created_at < now - tolerance:
            raise ValidationFailed("createdAt cannot belong to the past")
        return created_at


class ReportStore:
    """Persistence operations the monthly report subsystem depends on."""

    def __init__(self, session: Session) -> None:
        self.session = session

    def find_costs_by_user_and_date_range(
        self, userid: int, start: datetime, end: datetime
    ) -> list[Cost]:
        stmt = (
            select(Cost)
            .where(Cost.userid == userid, Cost.created_at.between(start, end))
            .order_by(Cost.created_at.asc(), Cost.id.asc())
        )
        return list(self.session.scalars(stmt).all())

    def find_cached_report(
        self, userid: int, year: int, month: int
    ) -> Optional[CachedReport]:
        return self.session.scalar(
            select(CachedReport).where(
                CachedReport.userid == userid,
                CachedReport.year == year,
                CachedReport.month == month,
            )
        )

    def upsert_cached_report(
        self,
        userid: int,
        year: int,
        month: int,
        payload: ReportPayload,
        computed_at: datetime,
    ) -> None:
        values = {
            "userid": userid,
            "year": year,
            "month": month,
            "payload": payload,
            "computed_at": computed_at,
        }
        dialect = self.session.get_bind().dialect.name
        if dialect in ("sqlite", "postgresql"):
            insert = sqlite.insert if dialect == "sqlite" else postgresql.insert
            stmt = insert(CachedReport).values(**values)
            stmt = stmt.on_conflict_do_update(
                index_elements=["userid", "year", "month"],
                set_={
                    "payload": stmt.excluded.payload,
                    "computed_at": stmt.excluded.computed_at,
                },
            )
            self.session.execute(stmt)
            return

        existing = self.find_cached_report(userid, year, month)
        if existing:
            existing.payload = payload
            existing.computed_at = computed_at
        else:
            self.session.add(CachedReport(**values))
        self.session.flush()


def build_monthly_report(
    store: ReportStore,
    userid: int,
    year: int,
    month: int,
    categories: Sequence[str],
) -> ReportPayload:
    window = month_window(year, month)
    costs = store.find_costs_by_user_and_date_range(userid, window.start, window.end)

    grouped: dict[str, list[dict[str, Any]]] = {name: [] for name in categories}
    for cost in costs:
        bucket = grouped.get(cost.category)
        if bucket is None:
            continue
        bucket.append(
            {
                "sum": plain_number(cost.sum),
                "description": cost.description,
                "day": cost.created_at.day,
            }
        )

    return {
        "userid": int(userid),
        "year": int(year),
        "month": int(month),
        "costs": [{name: grouped[name]} for name in categories],
    }


class ReportService:
    """Monthly reports: closed months are computed once and served from the
    reports table afterwards; the current month is always built live."""

    def __init__(
        self,
        session: Session,
        settings: Optional[Settings] = None,
        store: Optional[ReportStore] = None,
    ) -> None:
        self.session = session
        self.settings = settings or get_settings()
        self.store = store or ReportStore(session)

    def build(self, userid: int, year: int, month: int) -> ReportPayload:
        return build_monthly_report(
            self.store, userid, year, month, self.settings.categories
        )

    def get_monthly_report(
        self, userid: int, year: int, month: int, *, now: datetime
    ) -> ReportPayload:
        if not is_closed_month(year, month, now):
            logger.info(f"report_live: userid={userid} year={year} month={month}")
            return self.build(userid, year, month)

        cached = self.store.find_cached_report(userid, year, month)
        if cached is not None:
            logger.info(f"report_cache: hit userid={userid} year={year} month={month}")
            return cached.payload

        payload = self.build(userid, year, month)
        self._fill_cache(userid, year, month, payload, now)
        return payload

    def _fill_cache(
        self,
        userid: int,
        year: int,
        month: int,
        payload: ReportPayload,
        computed_at: datetime,
    ) -> None:
        try:
            self.store.upsert_cached_report(userid, year, month, payload, computed_at)
            self.session.commit()
        except SQLAlchemyError:
            self.session.rollback()
            logger.exception(
                f"report_cache: fill failed userid={userid} year={year} month={month}"
            )
            return
        logger.info(f"report_cache: filled userid={userid} year={year} month={month}")


class LogService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def record(
        self,
        message: str,
        *,
        level: str = "info",
        method: Optional[str] = None,
        path: Optional[str] = None,
        status_code: Optional[int] = None,
        meta: Optional[dict[str, Any]] = None,
    ) -> RequestLog:
        entry = RequestLog(
            level=level,
            message=message,
            method=method,
            path=path,
            status_code=status_code,
            meta=meta,
        )
        self.session.add(entry)
        self.session.commit()
        return entry

    def list_recent(self) -> list[RequestLog]:
        stmt = select(RequestLog).order_by(
            RequestLog.created_at.desc(), RequestLog.id.desc()
        )
        return list(self.session.scalars(stmt).all())

    def prune(self, older_than: datetime) -> int:
        result = self.session.execute(
            delete(RequestLog).where(RequestLog.created_at < older_than)
        )
        self.session.commit()
        return int(result.rowcount or 0)
