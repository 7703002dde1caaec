"""
Views derived from the cache for display: the job board grouped by stage,
companies with starred ones first, and which companies are due for a
fresh look.
"""

from datetime import date, timedelta
from typing import Dict, Iterable, List, Optional

from .models import Company, Job, Stage

FREQUENCIES = ("daily", "weekly")


def jobs_by_stage(jobs: Iterable[Job]) -> Dict[Stage, List[Job]]:
    """One column per stage, in pipeline order; empty stages included."""
    columns: Dict[Stage, List[Job]] = {stage: [] for stage in Stage}
    for job in jobs:
        columns[Stage(job.status)].append(job)
    return columns


def companies_starred_first(companies: Iterable[Company]) -> List[Company]:
    # sorted() is stable, so each group keeps cache order.
    return sorted(companies, key=lambda c: not c.starred)


def stale_company_ids(companies: Iterable[Company], frequency: str, today: Optional[date] = None) -> List[str]:
    """
    Ids of companies marked updated whose last update is too old.

    daily: last update is not today. weekly: no last update, or one from
    more than a week ago.
    """
    if frequency not in FREQUENCIES:
        raise ValueError(f"Unknown frequency: {frequency}. Use one of: {', '.join(FREQUENCIES)}")
    today = today or date.today()
    week_ago = today - timedelta(days=7)
    stale = []
    for company in companies:
        if not company.updated:
            continue
        last = date.fromisoformat(company.last_updated) if company.last_updated else None
        if frequency == "daily" and last != today:
            stale.append(company.id)
        elif frequency == "weekly" and (last is None or last < week_ago):
            stale.append(company.id)
    return stale
