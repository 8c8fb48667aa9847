"""
Covariate terms and model matrix construction.

Terms follow R's formula conventions:
    "age"              main effect
    "sex:treatment"    pairwise interaction (product of the two encodings)
    "sex*treatment"    shorthand for sex + treatment + sex:treatment

Categorical covariates are dummy coded against a reference level
(treatment contrasts); continuous covariates enter unchanged. Column names
match R's: a level is appended to its covariate name ("sexMale"), and
interaction columns join their parts with ":" ("sexMale:treatmentB").
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Mapping

import numpy as np
from numpy.typing import NDArray

from pysurvstat.core.exceptions import ValidationError
from pysurvstat.survival.design import SurvivalDesign


@dataclass(frozen=True)
class Term:
    """A main effect (one factor) or a pairwise interaction (two)."""

    factors: tuple[str, ...]

    @property
    def label(self) -> str:
        return ":".join(self.factors)

    @property
    def is_interaction(self) -> bool:
        return len(self.factors) > 1

    def __str__(self) -> str:
        return self.label


@dataclass(frozen=True)
class ModelMatrix:
    """Encoded design for a list of terms.

    Attributes
    ----------
    X : NDArray
        (n, p) numeric matrix, no intercept.
    column_names : tuple of str
    terms : tuple of Term
    term_columns : dict
        Term label -> indices of its columns in X.
    reference : dict
        Categorical covariate -> reference level used.
    """

    X: NDArray
    column_names: tuple[str, ...]
    terms: tuple[Term, ...]
    term_columns: dict[str, tuple[int, ...]]
    reference: dict[str, str]


def parse_terms(terms: Iterable[str | Term]) -> tuple[Term, ...]:
    """Parse term specifications into Terms, expanding ``a*b``.

    Duplicates are removed, keeping first occurrence.
    """
    parsed: list[Term] = []
    for item in terms:
        if isinstance(item, Term):
            expanded = [item]
        else:
            item = item.replace(" ", "")
            if not item:
                raise ValidationError("empty term")
            if "*" in item:
                parts = item.split("*")
                _check_pair(parts, item)
                a, b = parts
                expanded = [Term((a,)), Term((b,)), Term((a, b))]
            elif ":" in item:
                parts = item.split(":")
                _check_pair(parts, item)
                expanded = [Term(tuple(parts))]
            else:
                expanded = [Term((item,))]
        for term in expanded:
            if term not in parsed:
                parsed.append(term)
    if not parsed:
        raise ValidationError("at least one term is required")
    return tuple(parsed)


def _check_pair(parts: list[str], item: str) -> None:
    if len(parts) != 2 or not all(parts):
        raise ValidationError(
            f"only pairwise interactions are supported, got {item!r}"
        )
    if parts[0] == parts[1]:
        raise ValidationError(f"interaction of a covariate with itself: {item!r}")


def covariate_names(terms: Iterable[Term]) -> list[str]:
    """Distinct covariates referenced by terms, in order of appearance."""
    names: list[str] = []
    for term in terms:
        for factor in term.factors:
            if factor not in names:
                names.append(factor)
    return names


def build_model_matrix(
    design: SurvivalDesign,
    terms: Iterable[str | Term],
    reference: Mapping[str, str] | None = None,
) -> ModelMatrix:
    """Encode the covariates of a complete-case design into a model matrix.

    Parameters
    ----------
    design : SurvivalDesign
        Must have no missing values in the covariates the terms use.
    terms : iterable of str or Term
    reference : mapping or None
        Reference level per categorical covariate. Default: first level in
        sorted order.

    Raises
    ------
    MissingCovariateError
        If a term names a covariate absent from the design.
    ValidationError
        If a categorical covariate has a single level or an unknown
        reference level.
    """
    terms = parse_terms(terms)
    reference = dict(reference or {})

    encodings: dict[str, tuple[NDArray, list[str]]] = {}
    used_reference: dict[str, str] = {}
    for name in covariate_names(terms):
        col = design.column(name)
        if design.is_categorical(name):
            levels = design.levels(name)
            ref = reference.get(name, levels[0] if levels else None)
            if ref not in levels:
                raise ValidationError(
                    f"reference level {ref!r} for {name!r} not among "
                    f"observed levels {levels}"
                )
            others = [lvl for lvl in levels if lvl != ref]
            if not others:
                raise ValidationError(
                    f"categorical covariate {name!r} has a single level "
                    f"{ref!r} in this analysis"
                )
            mat = np.column_stack(
                [(col == lvl).astype(np.float64) for lvl in others]
            )
            encodings[name] = (mat, [f"{name}{lvl}" for lvl in others])
            used_reference[name] = ref
        else:
            encodings[name] = (col.reshape(-1, 1).astype(np.float64), [name])

    blocks: list[NDArray] = []
    column_names: list[str] = []
    term_columns: dict[str, tuple[int, ...]] = {}
    for term in terms:
        if term.is_interaction:
            (A, a_names), (B, b_names) = (encodings[f] for f in term.factors)
            block = np.column_stack([
                A[:, i] * B[:, j]
                for i in range(A.shape[1]) for j in range(B.shape[1])
            ])
            names = [f"{a}:{b}" for a in a_names for b in b_names]
        else:
            block, names = encodings[term.factors[0]]
        start = len(column_names)
        term_columns[term.label] = tuple(range(start, start + len(names)))
        blocks.append(block)
        column_names.extend(names)

    return ModelMatrix(
        X=np.column_stack(blocks),
        column_names=tuple(column_names),
        terms=terms,
        term_columns=term_columns,
        reference=used_reference,
    )
