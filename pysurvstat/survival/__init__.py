"""
Survival analysis.

Public API:
    SurvivalDesign, Subject          event time table
    kaplan_meier(...) -> KMSolution | KMStrataSolution
    survdiff(...) -> LogRankSolution
    pairwise_survdiff(...) -> PairwiseLogRankSolution
    coxph(...) -> CoxSolution
    cox_zph(fit) -> ZPHSolution
    backward_eliminate(...) -> EliminationSolution
"""

from pysurvstat.survival._logrank import p_adjust
from pysurvstat.survival._terms import ModelMatrix, Term, build_model_matrix, parse_terms
from pysurvstat.survival.control import ALPHA, CoxControl
from pysurvstat.survival.design import Subject, SurvivalDesign
from pysurvstat.survival.solution import (
    CoxSolution,
    EliminationSolution,
    KMSolution,
    KMStrataSolution,
    LogRankSolution,
    PairwiseLogRankSolution,
    ZPHSolution,
)
from pysurvstat.survival.solvers import (
    backward_eliminate,
    cox_zph,
    coxph,
    kaplan_meier,
    pairwise_survdiff,
    survdiff,
)

__all__ = [
    "ALPHA",
    "CoxControl",
    "CoxSolution",
    "EliminationSolution",
    "KMSolution",
    "KMStrataSolution",
    "LogRankSolution",
    "ModelMatrix",
    "PairwiseLogRankSolution",
    "Subject",
    "SurvivalDesign",
    "Term",
    "ZPHSolution",
    "backward_eliminate",
    "build_model_matrix",
    "cox_zph",
    "coxph",
    "kaplan_meier",
    "p_adjust",
    "pairwise_survdiff",
    "parse_terms",
    "survdiff",
]
