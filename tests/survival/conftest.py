"""
Shared survival fixtures.

The synthetic cohort mimics a small randomized trial: follow-up in whole
months (so event times are heavily tied), two- and three-level factors, a
continuous covariate and a pure-noise covariate whose true effect is 0.
"""

import numpy as np
import pytest

from pysurvstat.survival import SurvivalDesign


def make_cohort(rng, n=300):
    sex = rng.choice(["Female", "Male"], n)
    treatment = rng.choice(["A", "B", "C"], n)
    age = rng.normal(60.0, 10.0, n)
    noise = rng.normal(0.0, 1.0, n)

    lp = 0.5 * (sex == "Male") - 0.8 * (treatment == "B") + 0.03 * (age - 60.0)
    t_event = rng.exponential(20.0 * np.exp(-lp))
    t_cens = rng.uniform(10.0, 60.0, n)

    return {
        "time": np.ceil(np.minimum(t_event, t_cens)),
        "event": (t_event <= t_cens).astype(int),
        "sex": sex,
        "treatment": treatment,
        "age": age,
        "noise": noise,
    }


@pytest.fixture
def cohort_columns(rng):
    return make_cohort(rng)


@pytest.fixture
def cohort(cohort_columns):
    """Event time table for the synthetic cohort."""
    return SurvivalDesign.for_columns(cohort_columns)
