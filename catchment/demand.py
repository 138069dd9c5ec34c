"""
Demand Aggregator.

Turns point-level assignments into expected caseloads per facility. Each area
(postal code) has an expected number of events, which is its population per
age bracket times the bracket incidence rate. That number is split across
facilities in proportion to where the area's sampled demand points were
assigned.
"""

from __future__ import annotations

import logging
from typing import List, Mapping, Optional, Sequence

import numpy as np
import pandas as pd

from catchment.models import DISCONNECTED, Assignment, CaseloadEstimate, QueryPoint

logger = logging.getLogger(__name__)


def rates_per_person(per_100k: Mapping[str, float]) -> dict:
    return {bracket: float(rate) / 100000.0 for bracket, rate in per_100k.items()}


def expected_events(demographics: pd.DataFrame, incidence_rates: Mapping[str, float]) -> pd.Series:
    """
    Expected events per area: sum over brackets of population x rate.

    ``demographics`` is indexed by area code with one column per age bracket.
    Brackets with a rate but no column count as zero population.
    """
    brackets = list(incidence_rates)
    missing = [b for b in brackets if b not in demographics.columns]
    if missing:
        logger.warning("Demographics have no population columns for brackets %s", missing)
    pop = demographics.reindex(columns=brackets, fill_value=0).apply(pd.to_numeric, errors="coerce").fillna(0.0)
    rates = pd.Series(incidence_rates, dtype=float).reindex(brackets)
    out = pop.mul(rates, axis=1).sum(axis=1)
    out.index = out.index.astype(str)
    out.name = "expected_events"
    return out


def area_breakdown(
    points: Sequence[QueryPoint],
    assignment: Assignment,
    demographics: pd.DataFrame,
    incidence_rates: Mapping[str, float],
) -> pd.DataFrame:
    """
    Estimated cases per (area, facility).

    Rows are area codes, columns facility ids. Disconnected points are left
    out of both the per-facility counts and the area totals. An area whose
    total is zero contributes nothing.
    """
    facility_ids = list(assignment.facility_ids)
    rows = [
        (str(p.group), assignment[p.id])
        for p in points
        if p.group is not None and assignment[p.id] is not DISCONNECTED
    ]
    skipped = sum(1 for p in points if p.group is None)
    if skipped:
        logger.warning("%d demand points have no area code and are not weighted", skipped)

    df = pd.DataFrame(rows, columns=["area", "facility_id"])
    if df.empty:
        return pd.DataFrame(0.0, index=pd.Index([], name="area"), columns=pd.Index(facility_ids, name="facility_id"))

    counts = pd.crosstab(df["area"], df["facility_id"])
    for fid in counts.columns:
        if fid not in facility_ids:
            facility_ids.append(fid)
    counts = counts.reindex(columns=facility_ids, fill_value=0)

    totals = counts.sum(axis=1)
    share = counts.div(totals.replace(0, np.nan), axis=0).fillna(0.0)

    expected = expected_events(demographics, incidence_rates)
    unknown = sorted(set(share.index) - set(expected.index))
    if unknown:
        logger.warning("No demographics for areas %s, their expected events are zero", unknown)
    cases = share.mul(expected.reindex(share.index, fill_value=0.0), axis=0)
    cases.index.name = "area"
    cases.columns.name = "facility_id"
    return cases


def aggregate(
    points: Sequence[QueryPoint],
    assignment: Assignment,
    demographics: pd.DataFrame,
    incidence_rates: Mapping[str, float],
    breakdown: Optional[pd.DataFrame] = None,
) -> List[CaseloadEstimate]:
    """
    Absolute and percentage caseload per facility, sorted by facility id.

    Percentages share the sum of all facility totals. When that sum is zero
    every facility reports 0%.
    """
    if breakdown is None:
        breakdown = area_breakdown(points, assignment, demographics, incidence_rates)

    per_facility = breakdown.sum(axis=0)
    grand_total = float(per_facility.sum())
    point_counts = assignment.counts()

    facility_ids = sorted(set(assignment.facility_ids) | set(per_facility.index))
    out = []
    for fid in facility_ids:
        cases = float(per_facility.get(fid, 0.0))
        pct = 100.0 * cases / grand_total if grand_total > 0 else 0.0
        out.append(CaseloadEstimate(fid, cases, pct, int(point_counts.get(fid, 0))))
    return out


def caseload_frame(estimates: Sequence[CaseloadEstimate]) -> pd.DataFrame:
    return pd.DataFrame(
        [(e.facility_id, e.points, e.cases, e.percentage) for e in estimates],
        columns=["facility_id", "points", "cases", "percentage"],
    )
