"""
Filtres et pagination du tableau des factures

Projection pure de (collection, filtres, page): aucun état mémorisé, donc
rien ne peut devenir obsolète après une suppression.
"""

import math
from datetime import date, datetime, time, timezone
from typing import Optional, Sequence, Tuple

from pydantic import BaseModel, ConfigDict, field_validator

from dashboard.config import PAGE_SIZE
from dashboard.models import Facture


class DateRange(BaseModel):
    """Bornes incluses"""
    model_config = ConfigDict(frozen=True)

    start: datetime
    end: datetime

    @field_validator("start", "end")
    @classmethod
    def ensure_aware(cls, v):
        return v if v.tzinfo else v.replace(tzinfo=timezone.utc)

    @classmethod
    def from_days(cls, first: date, last: date) -> "DateRange":
        """Du premier jour 00:00 au dernier jour 23:59:59.999999 (UTC)"""
        return cls(
            start=datetime.combine(first, time.min, tzinfo=timezone.utc),
            end=datetime.combine(last, time.max, tzinfo=timezone.utc),
        )


class FactureFilters(BaseModel):
    model_config = ConfigDict(frozen=True)

    search: str = ""
    status: str = ""
    date_range: Optional[DateRange] = None


class PageView(BaseModel):
    model_config = ConfigDict(frozen=True)

    rows: Tuple[Facture, ...]
    page: int
    total_pages: int
    total_count: int


def matches_search(facture: Facture, search: str) -> bool:
    q = search.strip().lower()
    if not q:
        return True
    return (
        q in facture.ref.lower()
        or q in (facture.orderRef or "").lower()
        or q in facture.clientName.lower()
    )


def matches(facture: Facture, filters: FactureFilters) -> bool:
    if filters.status and facture.status != filters.status:
        return False
    if not matches_search(facture, filters.search):
        return False
    if filters.date_range:
        issued = facture.issue_date
        if not filters.date_range.start <= issued <= filters.date_range.end:
            return False
    return True


def filter_factures(factures: Sequence[Facture], filters: FactureFilters) -> Tuple[Facture, ...]:
    return tuple(f for f in factures if matches(f, filters))


def total_pages(count: int, page_size: int = PAGE_SIZE) -> int:
    return max(1, math.ceil(count / page_size))


def project(
    factures: Sequence[Facture],
    filters: FactureFilters,
    page: int,
    page_size: int = PAGE_SIZE,
) -> PageView:
    """Page courante; la page est bornée à 1..total_pages"""
    filtered = filter_factures(factures, filters)
    pages = total_pages(len(filtered), page_size)
    page = min(max(1, page), pages)
    start = (page - 1) * page_size
    return PageView(
        rows=filtered[start:start + page_size],
        page=page,
        total_pages=pages,
        total_count=len(filtered),
    )
