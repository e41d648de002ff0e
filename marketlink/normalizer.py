"""Conversion of backend price rows into display-ready summaries."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from datetime import UTC, datetime
from email.utils import parsedate_to_datetime
from typing import Any

from marketlink.models import DisplaySummary, PricePoint, SeriesResult

EMPTY_SUMMARY = DisplaySummary()


def to_epoch_ms(value: Any) -> int:
    """Convert a backend ``date`` field into epoch milliseconds.

    Accepts epoch milliseconds, ISO-8601 strings and RFC 2822 strings. Naive
    values are taken as UTC.
    """
    if isinstance(value, bool):
        raise ValueError(f"Unsupported date value: {value!r}")
    if isinstance(value, (int, float)):
        return int(value)
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"Unsupported date value: {value!r}")

    text = value.strip()
    try:
        dt = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        try:
            dt = parsedate_to_datetime(text)
        except (TypeError, ValueError) as exc:
            raise ValueError(f"Unparseable date: {value!r}") from exc

    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return int(dt.timestamp() * 1000)


def parse_points(rows: Iterable[Any]) -> tuple[PricePoint, ...]:
    points: list[PricePoint] = []
    for index, row in enumerate(rows):
        if not isinstance(row, Mapping) or row.get("date") is None or row.get("close") is None:
            raise ValueError(f"Price row {index} is missing 'date' or 'close'")
        points.append(PricePoint(timestamp=to_epoch_ms(row["date"]), close=float(row["close"])))
    return tuple(points)


def percent_change(first: float, last: float) -> float:
    # A zero base has no meaningful percentage; report no change.
    if first == 0:
        return 0.0
    return (last - first) / first * 100


def normalize(result: SeriesResult) -> DisplaySummary:
    if not result.success or not result.points:
        return EMPTY_SUMMARY

    first = result.points[0].close
    current = result.points[-1].close
    return DisplaySummary(
        current=current,
        change=percent_change(first, current),
        data=tuple((point.timestamp, point.close) for point in result.points),
    )
