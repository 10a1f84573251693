from __future__ import annotations

import math
from enum import Enum
from typing import Generic, TypeVar

from pydantic import BaseModel

T = TypeVar("T")

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100


class EmploymentStatus(str, Enum):
    EMPLOYED = "EMPLOYED"
    SELF_EMPLOYED = "SELF_EMPLOYED"
    UNEMPLOYED = "UNEMPLOYED"
    RETIRED = "RETIRED"

    @classmethod
    def _missing_(cls, value):  # type: ignore[override]
        try:
            return normalize_employment_status(value)
        except ValueError:
            return None


def normalize_employment_status(value: str | EmploymentStatus | None) -> EmploymentStatus | None:
    if value is None:
        return None
    if isinstance(value, EmploymentStatus):
        return value
    cleaned = str(value).strip()
    if not cleaned:
        return None
    normalized = cleaned.upper().replace("-", "_").replace(" ", "_")
    member = EmploymentStatus._value2member_map_.get(normalized)
    if member is not None:
        return member
    raise ValueError("Invalid employment_status value")


class Page(BaseModel, Generic[T]):
    items: list[T]
    total: int
    page: int
    page_size: int
    pages: int

    @classmethod
    def build(cls, items: list, total: int, page: int, page_size: int) -> "Page":
        pages = math.ceil(total / page_size) if page_size else 0
        return cls(items=items, total=total, page=page, page_size=page_size, pages=pages)


def page_offset(page: int, page_size: int) -> int:
    return (page - 1) * page_size


class MessageResponse(BaseModel):
    message: str
