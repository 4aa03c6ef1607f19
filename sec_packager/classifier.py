"""Bucket a company's filing history into the intelligence package categories.

Each filing belongs to at most one category. Categories are tried in
priority order (financials, material events, capital structure, ownership,
governance) and the first one with a matching slot takes the filing. Inside
its category a filing is kept only if it falls in the slot's retention
window; each slot is then sorted newest first and capped.
"""

import calendar
from dataclasses import dataclass
from datetime import date
from typing import Callable

from sec_packager.models import CategorizedFilings, Filing, FilingCategory


def months_before(day: date, months: int) -> date:
    """Same calendar day `months` months earlier, clamped to the month's end."""
    month_index = day.year * 12 + (day.month - 1) - months
    year, month = divmod(month_index, 12)
    month += 1
    return date(year, month, min(day.day, calendar.monthrange(year, month)[1]))


def form_is(*forms: str) -> Callable[[str], bool]:
    return lambda form: form in forms


def form_starts_with(*prefixes: str) -> Callable[[str], bool]:
    return lambda form: form.startswith(prefixes)


def is_major_shareholder_form(form: str) -> bool:
    # SC 13D/A is kept for the governance activist slot
    return ("13D" in form or "13G" in form) and form != "SC 13D/A"


def is_proxy_form(form: str) -> bool:
    # N- forms are fund proxies
    return "14A" in form and "N-" not in form


@dataclass(frozen=True)
class Slot:
    """One ranked list inside a category."""

    name: str
    category: FilingCategory
    matches: Callable[[str], bool]
    window_months: int | None
    limit: int | None


SLOTS = (
    Slot("latest_ten_k", FilingCategory.FINANCIALS, form_is("10-K"), None, 1),
    Slot("recent_ten_qs", FilingCategory.FINANCIALS, form_is("10-Q"), None, 2),
    Slot("recent_eight_ks", FilingCategory.MATERIAL_EVENTS, form_is("8-K"), 12, 10),
    Slot("registration_statements", FilingCategory.CAPITAL_STRUCTURE, form_starts_with("S-3", "S-1"), 24, 5),
    Slot("prospectus_supplements", FilingCategory.CAPITAL_STRUCTURE, form_starts_with("424B"), 24, 5),
    Slot("insider_transactions", FilingCategory.OWNERSHIP, form_is("3", "4", "5"), 12, 20),
    Slot("major_shareholder_filings", FilingCategory.OWNERSHIP, is_major_shareholder_form, None, 10),
    Slot("latest_proxy_statement", FilingCategory.GOVERNANCE, is_proxy_form, None, 1),
    Slot("activist_amendments", FilingCategory.GOVERNANCE, form_is("SC 13D/A"), None, 5),
)

SINGLE_SLOTS = {"latest_ten_k", "latest_proxy_statement"}


def assign_categories(filings: list[Filing]) -> dict[FilingCategory, dict[str, list[Filing]]]:
    """
    Partition filings by first matching slot, before retention and caps.

    Duplicate filings (same accession number and document) are kept once.
    Filings matching no slot are dropped.
    """
    assigned: dict[FilingCategory, dict[str, list[Filing]]] = {
        category: {slot.name: [] for slot in SLOTS if slot.category == category}
        for category in FilingCategory
    }
    seen: set[tuple[str, str]] = set()

    for filing in filings:
        if filing.key in seen:
            continue
        for category in FilingCategory:
            slot = next((s for s in SLOTS if s.category == category and s.matches(filing.form)), None)
            if slot is not None:
                assigned[category][slot.name].append(filing)
                seen.add(filing.key)
                break
    return assigned


def classify(filings: list[Filing], as_of: date) -> CategorizedFilings:
    """
    Build the categorized view of a filing history as of a given day.

    A retention window of N months keeps filings dated on or after the same
    calendar day N months before `as_of`.
    """
    assigned = assign_categories(filings)
    slots: dict[str, list[Filing]] = {}

    for slot in SLOTS:
        candidates = assigned[slot.category][slot.name]
        if slot.window_months is not None:
            start = months_before(as_of, slot.window_months)
            candidates = [f for f in candidates if f.filing_date >= start]
        candidates = sorted(candidates, key=lambda f: f.filing_date, reverse=True)
        slots[slot.name] = candidates[:slot.limit] if slot.limit is not None else candidates

    return CategorizedFilings(
        **{name: (ranked[0] if ranked else None) if name in SINGLE_SLOTS else ranked
           for name, ranked in slots.items()}
    )
