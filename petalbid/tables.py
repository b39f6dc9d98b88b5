"""
Sorting, paging and selection for the data tables shown on the role pages.
"""
from dataclasses import asdict, is_dataclass

import pandas as pd

ASC = "asc"
DESC = "desc"


def _value(row, key):
    if isinstance(row, dict):
        return row.get(key)
    return getattr(row, key, None)


def sort_rows(rows, order_by: str, order: str = ASC) -> list:
    """Stable sort on one column; missing values always go last."""
    rows = list(rows)
    if not rows:
        return rows
    keys = pd.DataFrame({"key": [_value(r, order_by) for r in rows]})
    ordered = keys.sort_values("key", ascending=(order == ASC), kind="mergesort", na_position="last")
    return [rows[i] for i in ordered.index]


def toggle_order(current_by: str, current_order: str, clicked: str):
    """Clicking the active ascending column flips it to descending."""
    if current_by == clicked and current_order == ASC:
        return clicked, DESC
    return clicked, ASC


def paginate(rows, page: int, rows_per_page: int) -> list:
    rows = list(rows)
    start = page * rows_per_page
    return rows[start:start + rows_per_page]


def page_count(total: int, rows_per_page: int) -> int:
    if rows_per_page <= 0:
        return 0
    return max(1, -(-total // rows_per_page))


def empty_rows(page: int, rows_per_page: int, total: int) -> int:
    """Filler rows on the last page so the table keeps its height."""
    return max(0, (1 + page) * rows_per_page - total) if page > 0 else 0


def toggle_selection(selected, key) -> list:
    selected = list(selected)
    if key in selected:
        selected.remove(key)
    else:
        selected.append(key)
    return selected


def select_all(rows, key: str, checked: bool) -> list:
    return [_value(r, key) for r in rows] if checked else []


def to_frame(rows, columns: dict = None) -> pd.DataFrame:
    """Rows (dicts or dataclasses) as a DataFrame, optionally renaming/selecting columns."""
    records = [asdict(r) if is_dataclass(r) else dict(r) for r in rows]
    df = pd.DataFrame.from_records(records)
    if columns:
        df = df.reindex(columns=list(columns.keys())).rename(columns=columns)
    return df
