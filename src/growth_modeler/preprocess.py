"""Per-group data conditioning applied before fitting."""

from __future__ import annotations

import numpy as np
import pandas as pd


def clamp_after_max(df: pd.DataFrame, x: str, y: str, grp: str) -> pd.DataFrame:
    """Hold y at the group's observed maximum for every x past the peak.

    The peak is the global maximum (first one on ties), not the first local
    maximum, so a dip followed by a higher reading does not clamp early.
    """
    out = df.sort_values([grp, x], kind="mergesort").copy()

    def _clamp(values: pd.Series) -> pd.Series:
        arr = values.to_numpy(dtype=float)
        if arr.size == 0 or not np.any(np.isfinite(arr)):
            return values
        peak = int(np.nanargmax(arr))
        arr = arr.copy()
        arr[peak + 1:] = arr[peak]
        return pd.Series(arr, index=values.index)

    out[y] = out.groupby(grp, sort=False)[y].transform(_clamp)
    return out


def clip_negative(df: pd.DataFrame, y: str) -> pd.DataFrame:
    out = df.copy()
    out[y] = out[y].clip(lower=0.0)
    return out


def add_zero(df: pd.DataFrame, x: str, y: str, grp: str) -> pd.DataFrame:
    """Replace any x == 0 rows with a single (0, 0) observation per group."""
    groups = df[grp].drop_duplicates()
    zeros = pd.DataFrame({grp: groups.to_numpy(), x: 0.0, y: 0.0})
    for col in df.columns:
        if col not in zeros.columns:
            first = df.groupby(grp, sort=False)[col].first()
            zeros[col] = zeros[grp].map(first)
    kept = df[df[x] != 0]
    out = pd.concat([kept, zeros[df.columns]], ignore_index=True)
    return out.sort_values([grp, x], kind="mergesort").reset_index(drop=True)


def prepare(
    df: pd.DataFrame,
    x: str,
    y: str,
    grp: str,
    *,
    max_as_last: bool = False,
    check_negative: bool = False,
    zero: bool = False,
) -> pd.DataFrame:
    """Apply the enabled steps in order: max_as_last, check_negative, add_zero."""
    out = df
    if max_as_last:
        out = clamp_after_max(out, x, y, grp)
    if check_negative:
        out = clip_negative(out, y)
    if zero:
        out = add_zero(out, x, y, grp)
    return out.sort_values([grp, x], kind="mergesort").reset_index(drop=True)
