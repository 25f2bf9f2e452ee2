"""Inspection due-date alerts."""

from __future__ import annotations

from datetime import date, datetime
from typing import Any

ANNUAL_WARNING_DAYS = 30
MIDTRIP_WARNING_DAYS = 7
ANNUAL_INTERVAL_DAYS = 365


def _as_date(value: Any) -> date | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


def _due_alert(kind: str, label: str, due: date, today: date, warning_days: int) -> dict[str, Any] | None:
    days_until = (due - today).days
    if days_until < 0:
        return {
            "type": kind,
            "severity": "critical",
            "title": f"{label} Overdue",
            "description": f"{label.capitalize()} is overdue by {abs(days_until)} days",
            "due_date": due,
        }
    if days_until <= warning_days:
        return {
            "type": kind,
            "severity": "warning",
            "title": f"{label} Due Soon",
            "description": f"{label.capitalize()} is due in {days_until} days",
            "due_date": due,
        }
    return None


def compute_inspection_alerts(asset: Any, today: date) -> list[dict[str, Any]]:
    """Alerts for an asset's annual and midtrip inspections as of ``today``."""
    alerts: list[dict[str, Any]] = []

    annual_due = _as_date(getattr(asset, "next_annual_inspection_due", None))
    last_annual = _as_date(getattr(asset, "last_annual_inspection", None))
    if annual_due is not None:
        alert = _due_alert("annual_inspection", "Annual Inspection", annual_due, today, ANNUAL_WARNING_DAYS)
        if alert:
            alerts.append(alert)
    elif last_annual is not None:
        # No due date recorded; fall back to a yearly cadence from the last one.
        days_since = (today - last_annual).days
        if days_since > ANNUAL_INTERVAL_DAYS:
            alerts.append(
                {
                    "type": "annual_inspection",
                    "severity": "critical",
                    "title": "Annual Inspection Overdue",
                    "description": f"Annual inspection is overdue by {days_since - ANNUAL_INTERVAL_DAYS} days",
                    "due_date": None,
                }
            )

    midtrip_due = _as_date(getattr(asset, "next_midtrip_inspection_due", None))
    if midtrip_due is not None:
        alert = _due_alert("midtrip_inspection", "Midtrip Inspection", midtrip_due, today, MIDTRIP_WARNING_DAYS)
        if alert:
            alerts.append(alert)

    return alerts


__all__ = ["compute_inspection_alerts"]
