"""Facility Assigner: nearest reachable facility per demand point."""

from __future__ import annotations

import numpy as np

from catchment.models import DISCONNECTED, Assignment, DistanceMatrix


def assign(matrix: DistanceMatrix) -> Assignment:
    """
    Label every row with its cheapest facility, or DISCONNECTED.

    Columns are sorted by facility id and argmin returns the first minimum,
    so ties go to the lowest facility id. Pure function of the matrix.
    """
    labels = {}
    values = matrix.values
    if values.shape[1] == 0:
        return Assignment({pid: DISCONNECTED for pid in matrix.point_ids}, matrix.facility_ids)

    finite = np.isfinite(values)
    reachable = finite.any(axis=1)
    best = np.argmin(np.where(finite, values, np.inf), axis=1)
    for pid, ok, j in zip(matrix.point_ids, reachable, best):
        labels[pid] = matrix.facility_ids[int(j)] if ok else DISCONNECTED
    return Assignment(labels, matrix.facility_ids)
