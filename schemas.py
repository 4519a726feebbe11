from datetime import date, datetime
from typing import Any, Literal, Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    StrictInt,
    ValidationError,
    field_validator,
)


USER_FIELDS = ("first_name", "last_name", "birthday")
COST_FIELDS = ("description", "category", "userid", "sum")


def classify_add_payload(body: Any) -> Literal["user", "cost"]:
    """Decide whether an add request carries a user or a cost."""
    if not isinstance(body, dict):
        raise ValueError("payload must be a JSON object")
    is_user = any(key in body for key in USER_FIELDS)
    is_cost = any(key in body for key in COST_FIELDS)
    if is_user and is_cost:
        raise ValueError("payload must be either user or cost, not both")
    if is_user:
        return "user"
    if is_cost:
        return "cost"
    raise ValueError("payload must be either a user or a cost")


def format_validation_error(exc: ValidationError) -> str:
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ()))
        parts.append(f"{loc}: {err['msg']}" if loc else err["msg"])
    return "; ".join(parts)


class UserIn(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    id: StrictInt
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)
    birthday: date


class CostIn(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True, populate_by_name=True)

    userid: StrictInt
    description: str = Field(..., min_length=1, max_length=500)
    category: str = Field(..., min_length=1, max_length=40)
    sum: float = Field(..., ge=0, allow_inf_nan=False)
    created_at: Optional[datetime] = Field(default=None, alias="createdAt")

    @field_validator("sum", mode="before")
    @classmethod
    def _reject_bool_sum(cls, value: Any) -> Any:
        if isinstance(value, bool):
            raise ValueError("sum must be a number")
        return value

    @field_validator("category")
    @classmethod
    def _lower_category(cls, value: str) -> str:
        return value.lower()
