"""
SurvivalDesign: immutable event time table.

Wraps follow-up time, event indicator, optional covariate matrix, optional
strata and named baseline covariates. Validates inputs at construction
time and stores subjects sorted by ascending time with events ordered
before censorings at tied times, so all downstream code trusts clean,
ordered data.

Complete-case handling is per analysis: the table keeps every subject with
a valid follow-up, and complete_cases() carves out the subjects usable by
an analysis that needs particular covariates.
"""

from __future__ import annotations

import logging
import numbers
import warnings
from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import Any, Iterable, Mapping

import numpy as np
from numpy.typing import NDArray

from pysurvstat.core.exceptions import (
    DimensionError,
    InvalidObservationError,
    InvalidObservationWarning,
    MissingCovariateError,
    ValidationError,
)
from pysurvstat.core.validation import (
    check_1d,
    check_array,
    check_consistent_length,
    check_min_samples,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Subject:
    """One patient record: follow-up time, event status, baseline covariates.

    ``time`` is months to death or censoring; ``event`` is True when the
    death was observed. Covariate values are strings for categorical
    covariates, numbers for continuous ones, and None when missing.
    """

    time: float
    event: bool
    covariates: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(
            self, "covariates", MappingProxyType(dict(self.covariates))
        )


@dataclass(frozen=True)
class SurvivalDesign:
    """Immutable survival data container.

    Parameters
    ----------
    time : NDArray
        Time to event or censoring, sorted ascending. Strictly positive.
    event : NDArray
        Event indicator: 1 = event observed, 0 = censored.
    X : NDArray or None
        Covariate matrix (n, p). None for KM / log-rank.
    strata : NDArray or None
        Strata labels for stratified analyses.
    covariates : dict
        Named baseline covariates. Continuous columns are float arrays with
        NaN for missing; categorical columns are object arrays of str with
        None for missing.
    order : NDArray
        order[i] is the input position of sorted row i.
    """

    time: NDArray
    event: NDArray
    X: NDArray | None
    strata: NDArray | None
    covariates: dict[str, NDArray] = field(default_factory=dict)
    order: NDArray | None = None

    # ── Factories ────────────────────────────────────────────────────

    @classmethod
    def for_survival(
        cls,
        time,
        event,
        X=None,
        *,
        strata=None,
    ) -> SurvivalDesign:
        """Create and validate survival data from arrays.

        Parameters
        ----------
        time : array-like
            Time to event or censoring.
        event : array-like
            Event indicator (0/1 or bool).
        X : array-like or None
            Optional covariate matrix.
        strata : array-like or None
            Optional strata labels.

        Returns
        -------
        SurvivalDesign

        Raises
        ------
        InvalidObservationError
            If any time is non-positive or non-finite, or an event
            indicator is not 0/1.
        DimensionError
            If array lengths disagree.
        """
        time_arr = check_array(time, "time").ravel()
        event_arr = check_array(event, "event").ravel()
        check_min_samples(time_arr, 1, "time")
        check_consistent_length(time_arr, event_arr, names=("time", "event"))

        _check_followup(time_arr, event_arr, drop_invalid=False)

        X_arr = None
        if X is not None:
            X_arr = check_array(X, "X")
            if X_arr.ndim == 1:
                X_arr = X_arr.reshape(-1, 1)
            if X_arr.ndim != 2:
                raise DimensionError(f"X must be 1D or 2D, got {X_arr.ndim}D")
            check_consistent_length(time_arr, X_arr, names=("time", "X"))

        strata_arr = None
        if strata is not None:
            strata_arr = np.asarray(strata).ravel()
            check_consistent_length(
                time_arr, strata_arr, names=("time", "strata")
            )

        return cls._sorted(time_arr, event_arr, X_arr, strata_arr, {})

    @classmethod
    def for_columns(
        cls,
        data: Mapping[str, Any],
        *,
        time: str = "time",
        event: str = "event",
        covariates: Iterable[str] | None = None,
        categorical: Iterable[str] = (),
        drop_invalid: bool = False,
    ) -> SurvivalDesign:
        """Create an event time table from named columns.

        Parameters
        ----------
        data : mapping
            Column name -> 1D values. A dict of lists or arrays, or any
            DataFrame-like object supporting ``data[name]`` and ``keys()``.
        time, event : str
            Names of the follow-up time and event indicator columns.
        covariates : iterable of str or None
            Covariate columns to carry. Default: every other column.
        categorical : iterable of str
            Columns to treat as categorical even if numerically coded.
        drop_invalid : bool
            Drop records with unusable follow-up (warning) instead of
            raising InvalidObservationError.
        """
        return cls._from_columns(
            data, time=time, event=event, covariates=covariates,
            categorical=categorical, drop_invalid=drop_invalid,
        )

    @classmethod
    def _from_columns(
        cls,
        data: Mapping[str, Any],
        *,
        time: str,
        event: str,
        covariates: Iterable[str] | None,
        categorical: Iterable[str],
        drop_invalid: bool,
    ) -> SurvivalDesign:
        # Called one frame below each public entry point (see _check_followup).
        if covariates is None:
            covariates = [k for k in data.keys() if k not in (time, event)]
        covariates = list(covariates)

        missing = [c for c in (time, event, *covariates) if c not in data.keys()]
        if missing:
            raise MissingCovariateError(
                f"columns not found in data: {missing}",
                name=missing[0],
                available=tuple(str(k) for k in data.keys()),
            )

        time_arr = _followup_column(data[time], "time")
        event_arr = _followup_column(data[event], "event")
        check_min_samples(time_arr, 1, "time")
        check_consistent_length(time_arr, event_arr, names=("time", "event"))

        forced = set(categorical)
        columns = {}
        for name in covariates:
            col = _covariate_column(data[name], name, name in forced)
            check_consistent_length(time_arr, col, names=("time", name))
            columns[name] = col

        keep = _check_followup(time_arr, event_arr, drop_invalid=drop_invalid)
        columns = {name: col[keep] for name, col in columns.items()}
        return cls._sorted(time_arr[keep], event_arr[keep], None, None, columns,
                           index=np.flatnonzero(keep))

    @classmethod
    def for_records(
        cls,
        records: Iterable[Subject | Mapping[str, Any]],
        *,
        covariates: Iterable[str] | None = None,
        categorical: Iterable[str] = (),
        drop_invalid: bool = False,
    ) -> SurvivalDesign:
        """Create an event time table from per-subject records.

        Each record is a Subject or a mapping with ``time`` and ``event``
        keys; every other key is a covariate. A covariate absent from a
        record is treated as missing for that subject.
        """
        records = list(records)
        if not records:
            raise ValidationError("records must contain at least one subject")

        rows = []
        for rec in records:
            if isinstance(rec, Subject):
                rows.append((rec.time, rec.event, rec.covariates))
            else:
                if "time" not in rec or "event" not in rec:
                    raise InvalidObservationError(
                        "record is missing 'time' or 'event'",
                        index=len(rows),
                    )
                rest = {k: v for k, v in rec.items() if k not in ("time", "event")}
                rows.append((rec["time"], rec["event"], rest))

        if covariates is None:
            seen: dict[str, None] = {}
            for _, _, cov in rows:
                for k in cov:
                    seen.setdefault(k, None)
            covariates = list(seen)

        data: dict[str, list] = {
            "time": [r[0] for r in rows],
            "event": [r[1] for r in rows],
        }
        for name in covariates:
            data[name] = [r[2].get(name) for r in rows]

        return cls._from_columns(
            data,
            time="time",
            event="event",
            covariates=covariates,
            categorical=categorical,
            drop_invalid=drop_invalid,
        )

    @classmethod
    def _sorted(
        cls,
        time: NDArray,
        event: NDArray,
        X: NDArray | None,
        strata: NDArray | None,
        covariates: dict[str, NDArray],
        index: NDArray | None = None,
    ) -> SurvivalDesign:
        # Ascending time; events before censorings at tied times
        order = np.lexsort((-event, time))
        if index is None:
            index = np.arange(len(time))
        return cls(
            time=time[order],
            event=event[order].astype(np.float64),
            X=X[order] if X is not None else None,
            strata=strata[order] if strata is not None else None,
            covariates={name: col[order] for name, col in covariates.items()},
            order=index[order],
        )

    # ── Views ────────────────────────────────────────────────────────

    def subset(self, mask: NDArray) -> SurvivalDesign:
        """Rows where mask is True, keeping the sorted order."""
        mask = np.asarray(mask, dtype=bool)
        return SurvivalDesign(
            time=self.time[mask],
            event=self.event[mask],
            X=self.X[mask] if self.X is not None else None,
            strata=self.strata[mask] if self.strata is not None else None,
            covariates={k: v[mask] for k, v in self.covariates.items()},
            order=self.order[mask] if self.order is not None else None,
        )

    def complete_cases(self, names: Iterable[str]) -> tuple[SurvivalDesign, int]:
        """Restrict to subjects with every named covariate present.

        Returns
        -------
        (design, n_dropped)

        Raises
        ------
        MissingCovariateError
            If a name is not a covariate of this table.
        """
        names = list(names)
        keep = np.ones(self.n, dtype=bool)
        for name in names:
            keep &= ~_missing_mask(self.column(name))
        n_dropped = int(self.n - keep.sum())
        if n_dropped == 0:
            return self, 0
        logger.info(
            "complete-case filter on %s dropped %d of %d subjects",
            names, n_dropped, self.n,
        )
        return self.subset(keep), n_dropped

    def column(self, name: str) -> NDArray:
        """Covariate values by name (sorted order)."""
        try:
            return self.covariates[name]
        except KeyError:
            raise MissingCovariateError(
                f"covariate {name!r} is not in the table; "
                f"available: {sorted(self.covariates)}",
                name=name,
                available=tuple(self.covariates),
            ) from None

    def is_categorical(self, name: str) -> bool:
        return self.column(name).dtype == object

    def levels(self, name: str) -> list[str]:
        """Sorted distinct non-missing levels of a categorical covariate."""
        col = self.column(name)
        if col.dtype != object:
            raise ValidationError(f"covariate {name!r} is continuous")
        return sorted({v for v in col if v is not None})

    def with_model(self, X: NDArray, strata: NDArray | None) -> SurvivalDesign:
        """Same subjects carrying a model matrix and strata."""
        return replace(self, X=X, strata=strata)

    @property
    def n(self) -> int:
        """Number of observations."""
        return len(self.time)

    @property
    def p(self) -> int | None:
        """Number of covariates (None if no covariates)."""
        return self.X.shape[1] if self.X is not None else None

    @property
    def n_events(self) -> int:
        """Number of observed events."""
        return int(np.sum(self.event))


# ── Column helpers ───────────────────────────────────────────────────


def _is_missing(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, (float, np.floating)) and np.isnan(value):
        return True
    return False


def _missing_mask(col: NDArray) -> NDArray:
    if col.dtype == object:
        return np.array([v is None for v in col], dtype=bool)
    return np.isnan(col)


def _followup_column(values: Any, name: str) -> NDArray:
    """time / event as float with NaN for missing entries."""
    raw = np.asarray(values, dtype=object).ravel()
    out = np.empty(len(raw), dtype=np.float64)
    for i, v in enumerate(raw):
        if _is_missing(v):
            out[i] = np.nan
            continue
        try:
            out[i] = float(v)
        except (TypeError, ValueError) as e:
            raise InvalidObservationError(
                f"{name}[{i}] is not numeric: {v!r}", index=i, value=v,
            ) from e
    check_1d(out, name)
    return out


def _covariate_column(values: Any, name: str, categorical: bool) -> NDArray:
    """Normalize a covariate to float (continuous) or object/str (categorical)."""
    arr = np.asarray(values)
    if arr.ndim != 1:
        raise DimensionError(f"{name}: expected 1D, got {arr.ndim}D")

    if not categorical and arr.dtype.kind in "biuf":
        return arr.astype(np.float64)

    numeric = all(
        _is_missing(v) or (isinstance(v, numbers.Real) and not isinstance(v, str))
        for v in arr
    )
    if numeric and not categorical:
        return np.array(
            [np.nan if _is_missing(v) else float(v) for v in arr],
            dtype=np.float64,
        )

    out = np.empty(len(arr), dtype=object)
    for i, v in enumerate(arr):
        out[i] = None if _is_missing(v) else _level_label(v)
    return out


def _level_label(value: Any) -> str:
    # 1.0 -> "1" so numerically coded factors read naturally
    if isinstance(value, (float, np.floating)) and float(value).is_integer():
        return str(int(value))
    if isinstance(value, (bool, np.bool_)):
        return str(bool(value))
    return str(value)


def _check_followup(
    time: NDArray, event: NDArray, *, drop_invalid: bool
) -> NDArray:
    """Mask of usable follow-up records; raise or warn on the rest."""
    with np.errstate(invalid="ignore"):
        bad_time = ~np.isfinite(time) | (time <= 0)
    bad_event = ~np.isin(event, [0.0, 1.0])
    bad = bad_time | bad_event
    if not bad.any():
        return np.ones(len(time), dtype=bool)

    first = int(np.flatnonzero(bad)[0])
    if not drop_invalid:
        if bad_time[first]:
            raise InvalidObservationError(
                f"time must be positive and finite; "
                f"time[{first}] = {time[first]}",
                index=first,
                value=float(time[first]),
            )
        raise InvalidObservationError(
            f"event must contain only 0 and 1; "
            f"event[{first}] = {event[first]}",
            index=first,
            value=float(event[first]),
        )

    n_bad = int(bad.sum())
    logger.info("dropping %d records with unusable follow-up", n_bad)
    warnings.warn(
        f"Dropped {n_bad} record(s) with non-positive, missing or "
        f"invalid follow-up (first at index {first})",
        InvalidObservationWarning,
        stacklevel=4,
    )
    return ~bad
