"""Likelihood-based summaries and nested-model comparison."""

from __future__ import annotations

from typing import TYPE_CHECKING

import numpy as np
import pandas as pd
from scipy import stats

from .errors import InputError
from .util import significance_code

if TYPE_CHECKING:
    from .collection import FitCollection


def loglik(collection: "FitCollection") -> pd.DataFrame:
    """Gaussian log-likelihood at the least-squares optimum, per group.

    logL = 0.5 * (-N * (log(2*pi) + 1 - log(N) + log(sse))), with the
    residual variance counted as one extra parameter (df = P + 1).
    """
    rows = []
    for f in collection.fits.values():
        n = f.n_obs
        with np.errstate(divide="ignore"):
            logl = 0.5 * (-n * (np.log(2.0 * np.pi) + 1.0 - np.log(n) + np.log(f.sse)))
        rows.append(
            {"uid": f.uid, "logLik": float(logl), "df": f.n_free + 1, "nobs": n, "p": f.n_free}
        )
    return pd.DataFrame(rows, columns=["uid", "logLik", "df", "nobs", "p"])


def aic(collection: "FitCollection", k: float = 2.0) -> pd.DataFrame:
    out = loglik(collection)
    out["AIC"] = k * out["df"] - 2.0 * out["logLik"]
    return out


def bic(collection: "FitCollection") -> pd.DataFrame:
    out = loglik(collection)
    out["BIC"] = np.log(out["nobs"].astype(float)) * out["df"] - 2.0 * out["logLik"]
    return out


def _same_data(a: "FitCollection", b: "FitCollection") -> bool:
    if set(a.fits) != set(b.fits):
        return False
    for u, fa in a.fits.items():
        fb = b.fits[u]
        if fa.x.shape != fb.x.shape:
            return False
        if not (np.array_equal(fa.x, fb.x) and np.array_equal(fa.y, fb.y)):
            return False
    return True


def anova(reduced: "FitCollection", full: "FitCollection") -> pd.DataFrame:
    """Per-group extra-sum-of-squares F-test of a reduced against a full model.

    Both collections must be fitted to the same observations and the
    reduced model must have fewer free parameters.
    """
    if full is None:
        raise InputError("anova is only defined for a pair of collections.")
    if not _same_data(reduced, full):
        raise InputError("The models are not fitted to the same dataset.")

    rows = []
    for u, ff in full.fits.items():
        fr = reduced.fits[u]
        if fr.n_free >= ff.n_free:
            raise InputError(
                "The reduced model must have fewer parameters than the full model."
            )
        df1 = ff.n_free - fr.n_free
        df2 = ff.n_obs - ff.n_free
        if df2 > 0 and ff.sse > 0:
            f_stat = ((fr.sse - ff.sse) / df1) / (ff.sse / df2)
            p_value = float(stats.f.sf(f_stat, df1, df2))
        else:
            f_stat = float("nan")
            p_value = float("nan")
        rows.append(
            {
                "uid": u,
                "RSS_reduced": fr.sse,
                "RSS_full": ff.sse,
                "n": ff.n_obs,
                "df1": df1,
                "df2": df2,
                "F": f_stat,
                "Pr(>F)": p_value,
                ".": significance_code(p_value),
            }
        )
    return pd.DataFrame(rows)
