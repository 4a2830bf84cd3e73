"""Simple reporting utilities for CLI output."""

from __future__ import annotations

from collections import defaultdict
from datetime import datetime, timedelta
from pathlib import Path
from typing import Iterable, Mapping, Optional

from .db import database_connection, fetch_activity_totals


class SummaryPrinter:
    """Render human-readable summaries in the console."""

    def __init__(self, db_path: Path) -> None:
        self.db_path = Path(db_path)

    def print_daily_summary(self, day: datetime) -> None:
        start = day.replace(hour=0, minute=0, second=0, microsecond=0)
        with database_connection(self.db_path) as conn:
            rows = fetch_activity_totals(conn, start, start + timedelta(days=1))
        if not rows:
            print("No activity recorded for the selected day.")
            return

        total = sum(row["seconds"] for row in rows)
        print(f"Summary for {start.strftime('%Y-%m-%d')}")
        print("-" * 40)
        print(f"Tracked time: {format_duration(total)}")
        print()

        print("By activity:")
        for activity_type, seconds in aggregate_by_activity(rows):
            print(f"  {activity_type:<30} {format_duration(seconds)}")

        projects = aggregate_by_project(rows)
        if projects:
            print()
            print("By project:")
            for project, seconds in projects[:5]:
                print(f"  {project[:30]:<30} {format_duration(seconds)}")


def aggregate_by_activity(rows: Iterable[Mapping]) -> list[tuple[str, float]]:
    totals: defaultdict[str, float] = defaultdict(float)
    for row in rows:
        totals[row["activity_type"]] += row["seconds"]
    return sorted(totals.items(), key=lambda item: item[1], reverse=True)


def aggregate_by_project(rows: Iterable[Mapping]) -> list[tuple[str, float]]:
    totals: defaultdict[str, float] = defaultdict(float)
    for row in rows:
        project: Optional[str] = row["project_name"]
        if not project:
            continue
        totals[project] += row["seconds"]
    return sorted(totals.items(), key=lambda item: item[1], reverse=True)


def format_duration(seconds: float) -> str:
    total_seconds = int(round(seconds))
    hours, remainder = divmod(total_seconds, 3600)
    minutes, secs = divmod(remainder, 60)
    return f"{hours:02d}:{minutes:02d}:{secs:02d}"
