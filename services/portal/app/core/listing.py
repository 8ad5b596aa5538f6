"""
Browse-side listing pipeline: filter, sort, paginate and cascading options.

This runs over an already fetched, unfiltered row set and is deliberately
separate from the catalog query normalizer. Rows are any objects exposing
title, professor, course_name, course_code, course_number, date and path.
"""
import math
from dataclasses import dataclass, field, replace
from datetime import date
from enum import Enum
from functools import cmp_to_key
from typing import Any, Iterable, List, Optional, Sequence

PAGE_SIZES = (25, 50, 100)
DEFAULT_PAGE_SIZE = 50


class SortField(str, Enum):
    COURSE_CODE = "course_code"
    PROFESSOR = "professor"
    DATE = "date"


class SortOrder(str, Enum):
    ASC = "asc"
    DESC = "desc"


def _text(row: Any, name: str) -> str:
    value = getattr(row, name, None)
    if value is None:
        return ""
    if isinstance(value, date):
        return value.isoformat()
    return str(value)


@dataclass(frozen=True)
class ListingState:
    """
    Filter/sort/page selections of one browsing session.

    Every transition except jump_to_page returns a state on page 1.
    """
    course_code: Optional[str] = None
    course_number: Optional[str] = None
    professor: Optional[str] = None
    search: str = ""
    sort_field: SortField = SortField.COURSE_CODE
    sort_order: SortOrder = SortOrder.ASC
    page_size: int = DEFAULT_PAGE_SIZE
    page: int = 1

    def __post_init__(self):
        if self.page_size not in PAGE_SIZES:
            raise ValueError(f"page_size must be one of {PAGE_SIZES}")

    def select_course_code(self, course_code: Optional[str]) -> "ListingState":
        return replace(self, course_code=course_code or None, course_number=None, professor=None, page=1)

    def select_course_number(self, course_number: Optional[str]) -> "ListingState":
        return replace(self, course_number=course_number or None, professor=None, page=1)

    def select_professor(self, professor: Optional[str]) -> "ListingState":
        return replace(self, professor=professor or None, page=1)

    def with_search(self, search: str) -> "ListingState":
        return replace(self, search=search or "", page=1)

    def with_sort(self, sort_field: SortField) -> "ListingState":
        return replace(self, sort_field=SortField(sort_field), page=1)

    def toggle_order(self) -> "ListingState":
        order = SortOrder.DESC if self.sort_order == SortOrder.ASC else SortOrder.ASC
        return replace(self, sort_order=order, page=1)

    def with_page_size(self, page_size: int) -> "ListingState":
        return replace(self, page_size=page_size, page=1)

    def jump_to_page(self, value: Any, total_pages: int) -> "ListingState":
        return replace(self, page=clamp_page(value, total_pages))


def clamp_page(value: Any, total_pages: int) -> int:
    """Clamp a typed page number into [1, total_pages]; garbage becomes 1."""
    try:
        page = int(value)
    except (TypeError, ValueError):
        return 1
    if page < 1 or total_pages < 1:
        return 1
    return min(page, total_pages)


def matches_search(row: Any, search: str) -> bool:
    """
    Soft substring match used by the browse view.

    The term is tried once with its spaces against a haystack whose date has
    hyphens turned into spaces, and once with spaces collapsed to hyphens
    against the raw date.
    """
    with_spaces = (search or "").strip().lower()
    if not with_spaces:
        return True
    with_hyphens = "-".join(with_spaces.split())

    parts = [
        _text(row, "title"),
        _text(row, "professor"),
        _text(row, "course_name"),
        _text(row, "course_code"),
        _text(row, "course_number"),
    ]
    raw_date = _text(row, "date")
    path = _text(row, "path")

    spaced = " ".join(parts + [raw_date.replace("-", " "), path]).lower()
    hyphenated = " ".join(parts + [raw_date, path]).lower()
    return with_spaces in spaced or with_hyphens in hyphenated


def filter_rows(rows: Iterable[Any], state: ListingState) -> List[Any]:
    result = []
    for row in rows:
        if state.course_code and _text(row, "course_code") != state.course_code:
            continue
        if state.course_number and _text(row, "course_number") != state.course_number:
            continue
        if state.professor and _text(row, "professor") != state.professor:
            continue
        if not matches_search(row, state.search):
            continue
        result.append(row)
    return result


def _professor_initial(row: Any) -> str:
    # Last whitespace token's first letter; no further tie-breaking
    tokens = _text(row, "professor").split(" ")
    return tokens[-1][:1].upper()


def sort_key_value(row: Any, sort_field: SortField) -> str:
    if sort_field == SortField.PROFESSOR:
        return _professor_initial(row)
    if sort_field == SortField.DATE:
        return _text(row, "date")
    return _text(row, "course_code")


def sort_rows(rows: Sequence[Any], sort_field: SortField, sort_order: SortOrder) -> List[Any]:
    """Stable sort; descending negates the comparison instead of reversing."""
    sign = -1 if SortOrder(sort_order) == SortOrder.DESC else 1
    sort_field = SortField(sort_field)

    def compare(a, b):
        av, bv = sort_key_value(a, sort_field), sort_key_value(b, sort_field)
        return sign * ((av > bv) - (av < bv))

    return sorted(rows, key=cmp_to_key(compare))


@dataclass
class Page:
    items: List[Any]
    page: int
    page_size: int
    total: int
    total_pages: int

    @property
    def start_index(self) -> int:
        """1-based index of the first row shown, 0 when empty."""
        return (self.page - 1) * self.page_size + 1 if self.items else 0

    @property
    def end_index(self) -> int:
        return min(self.page * self.page_size, self.total) if self.items else 0


def total_pages_for(total: int, page_size: int) -> int:
    return math.ceil(total / page_size)


def paginate(rows: Sequence[Any], page: int, page_size: int) -> Page:
    total = len(rows)
    pages = total_pages_for(total, page_size)
    start = (page - 1) * page_size
    return Page(
        items=list(rows[start:start + page_size]),
        page=page,
        page_size=page_size,
        total=total,
        total_pages=pages,
    )


def course_code_options(all_rows: Iterable[Any]) -> List[str]:
    """Course codes from the full unfiltered set, so a selection never hides its siblings."""
    return sorted({_text(r, "course_code") for r in all_rows} - {""})


def course_number_options(all_rows: Iterable[Any], course_code: Optional[str]) -> List[str]:
    if not course_code:
        return []
    return sorted({
        _text(r, "course_number") for r in all_rows
        if _text(r, "course_code") == course_code
    } - {""})


def professor_options(all_rows: Iterable[Any], course_code: Optional[str], course_number: Optional[str]) -> List[str]:
    if not course_code or not course_number:
        return []
    return sorted({
        _text(r, "professor") for r in all_rows
        if _text(r, "course_code") == course_code and _text(r, "course_number") == course_number
    } - {""})


@dataclass
class ListingView:
    state: ListingState
    page: Page
    course_codes: List[str] = field(default_factory=list)
    course_numbers: List[str] = field(default_factory=list)
    professors: List[str] = field(default_factory=list)


def build_listing(all_rows: Sequence[Any], state: ListingState) -> ListingView:
    """Run filter, sort and paginate; the page is clamped to what exists."""
    filtered = filter_rows(all_rows, state)
    ordered = sort_rows(filtered, state.sort_field, state.sort_order)
    pages = total_pages_for(len(ordered), state.page_size)
    state = state.jump_to_page(state.page, pages)
    return ListingView(
        state=state,
        page=paginate(ordered, state.page, state.page_size),
        course_codes=course_code_options(all_rows),
        course_numbers=course_number_options(all_rows, state.course_code),
        professors=professor_options(all_rows, state.course_code, state.course_number),
    )
