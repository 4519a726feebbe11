from datetime import datetime

from sqlalchemy import create_engine
from sqlalchemy.orm import Session

from database import Base
from models import Cost
from services import ReportStore, build_monthly_report, plain_number


CATEGORIES = ("food", "education", "health", "housing", "sports")


class StubStore:
    def __init__(self, costs: list[Cost]) -> None:
        self.costs = costs
        self.calls: list[tuple[int, datetime, datetime]] = []

    def find_costs_by_user_and_date_range(self, userid, start, end):
        self.calls.append((userid, start, end))
        return list(self.costs)


def _cost(category: str, amount: float, description: str, when: datetime) -> Cost:
    return Cost(
        userid=7,
        description=description,
        category=category,
        sum=amount,
        created_at=when,
    )


def test_empty_month_lists_every_category() -> None:
    payload = build_monthly_report(StubStore([]), 7, 2025, 3, CATEGORIES)
    assert payload == {
        "userid": 7,
        "year": 2025,
        "month": 3,
        "costs": [
            {"food": []},
            {"education": []},
            {"health": []},
            {"housing": []},
            {"sports": []},
        ],
    }


def test_queries_the_full_month_window() -> None:
    store = StubStore([])
    build_monthly_report(store, 7, 2025, 2, CATEGORIES)
    assert store.calls == [
        (7, datetime(2025, 2, 1), datetime(2025, 2, 28, 23, 59, 59, 999999))
    ]


def test_groups_in_fixed_order_and_keeps_fetch_order() -> None:
    costs = [
        _cost("sports", 40, "gym", datetime(2025, 3, 2, 9, 0)),
        _cost("food", 8, "milk", datetime(2025, 3, 3, 9, 0)),
        _cost("health", 12.5, "pills", datetime(2025, 3, 4, 9, 0)),
        _cost("food", 3.5, "bread", datetime(2025, 3, 5, 9, 0)),
    ]
    payload = build_monthly_report(StubStore(costs), 7, 2025, 3, CATEGORIES)

    assert [next(iter(entry)) for entry in payload["costs"]] == list(CATEGORIES)
    assert payload["costs"][0]["food"] == [
        {"sum": 8, "description": "milk", "day": 3},
        {"sum": 3.5, "description": "bread", "day": 5},
    ]
    assert payload["costs"][1]["education"] == []
    assert payload["costs"][2]["health"] == [
        {"sum": 12.5, "description": "pills", "day": 4}
    ]
    assert payload["costs"][4]["sports"] == [
        {"sum": 40, "description": "gym", "day": 2}
    ]


def test_uses_injected_category_order() -> None:
    costs = [_cost("food", 1, "apple", datetime(2025, 3, 1, 8, 0))]
    payload = build_monthly_report(StubStore(costs), 7, 2025, 3, ("sports", "food"))
    assert payload["costs"] == [
        {"sports": []},
        {"food": [{"sum": 1, "description": "apple", "day": 1}]},
    ]


def test_costs_outside_the_category_list_are_ignored() -> None:
    costs = [_cost("travel", 100, "train", datetime(2025, 3, 1, 8, 0))]
    payload = build_monthly_report(StubStore(costs), 7, 2025, 3, CATEGORIES)
    assert all(not list(entry.values())[0] for entry in payload["costs"])


def test_store_range_scan_respects_user_and_month_bounds() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        session.add_all(
            [
                Cost(userid=7, description="first", category="food", sum=1,
                     created_at=datetime(2025, 3, 1, 0, 0)),
                Cost(userid=7, description="last", category="food", sum=2,
                     created_at=datetime(2025, 3, 31, 23, 59, 59)),
                Cost(userid=7, description="next month", category="food", sum=3,
                     created_at=datetime(2025, 4, 1, 0, 0)),
                Cost(userid=7, description="prev month", category="food", sum=4,
                     created_at=datetime(2025, 2, 28, 23, 59)),
                Cost(userid=8, description="someone else", category="food", sum=5,
                     created_at=datetime(2025, 3, 10, 12, 0)),
            ]
        )
        session.commit()

        payload = build_monthly_report(
            ReportStore(session), 7, 2025, 3, CATEGORIES
        )

    assert payload["costs"][0]["food"] == [
        {"sum": 1, "description": "first", "day": 1},
        {"sum": 2, "description": "last", "day": 31},
    ]


def test_building_twice_gives_the_same_payload() -> None:
    costs = [_cost("housing", 900, "rent", datetime(2025, 3, 1, 8, 0))]
    store = StubStore(costs)
    assert build_monthly_report(store, 7, 2025, 3, CATEGORIES) == build_monthly_report(
        store, 7, 2025, 3, CATEGORIES
    )


def test_plain_number_is_idempotent() -> None:
    assert plain_number(8.0) == 8
    assert isinstance(plain_number(8.0), int)
    assert plain_number(3.5) == 3.5
    assert plain_number(plain_number(3.5)) == 3.5
    assert isinstance(plain_number(plain_number(8.0)), int)
