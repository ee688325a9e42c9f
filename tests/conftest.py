"""
Pytest configuration and shared fixtures for merbridge tests
"""

import logging
from typing import Any, Callable, Dict, List, Optional, Tuple

import numpy as np
import pandas as pd
import pytest


class RecordingSession:
    """
    Stand-in for BridgeSession that records primitive calls.

    ``responses`` maps R source text to the value ``evaluate`` returns;
    ``fallback`` answers anything else.
    """

    def __init__(
        self,
        responses: Optional[Dict[str, Any]] = None,
        fallback: Optional[Callable[[str], Any]] = None,
    ):
        self.calls: List[Tuple[str, Any]] = []
        self.assigned: Dict[str, Any] = {}
        self.responses = dict(responses or {})
        self.fallback = fallback

    def assign(self, name, value):
        self.calls.append(("assign", name))
        self.assigned[name] = value

    def run(self, source):
        self.calls.append(("run", source))

    def evaluate(self, source, want_return=True):
        self.calls.append(("evaluate", source))
        if not want_return:
            return None
        if source in self.responses:
            return self.responses[source]
        if self.fallback is not None:
            return self.fallback(source)
        raise AssertionError(f"unexpected evaluate: {source[:80]!r}")

    @property
    def primitives(self) -> List[str]:
        return [kind for kind, _ in self.calls]


def conversion_payload(
    terms=("(Intercept)", "x"),
    convergence_code=0,
    convergence_messages=(),
    reml=False,
    singular=False,
):
    """What the conversion expression evaluates to for ``y ~ 1 + x + (1 | group)``."""
    k = len(terms)
    return {
        "fixed": pd.DataFrame({
            "term": list(terms),
            "estimate": np.linspace(1.0, 2.0, k),
            "std_error": np.full(k, 0.1),
            "t_value": np.linspace(10.0, 20.0, k),
        }),
        "varcorr": pd.DataFrame({
            "group": ["group", "Residual"],
            "var1": ["(Intercept)", ""],
            "var2": ["", ""],
            "vcov": [0.25, 0.04],
            "sdcor": [0.5, 0.2],
        }),
        "formula": "y ~ 1 + x + (1 | group)",
        "reml": reml,
        "loglik": -12.5,
        "df": 4,
        "aic": 33.0,
        "bic": 35.5,
        "criterion": 25.0,
        "sigma": 0.2,
        "nobs": 8,
        "ngroups": {"group": 4},
        "convergence_code": convergence_code,
        "convergence_messages": list(convergence_messages),
        "singular": singular,
    }


def interval_payload():
    """What the interval expression evaluates to for ``y ~ 1 + x + (1 | group)``."""
    return pd.DataFrame({
        "type": ["beta", "beta", "sigma", "sigma"],
        "group": ["", "", "group", "Residual"],
        "names": ["(Intercept)", "x", "(Intercept)", ""],
        "lower": [0.8, 1.7, 0.1, 0.15],
        "upper": [1.2, 2.3, 0.9, 0.25],
    })


@pytest.fixture
def sample_dataframe():
    """
    Two observations per group, ten groups, a categorical grouping column.
    """
    np.random.seed(42)
    groups = np.repeat([f"g{i:02d}" for i in range(10)], 2)
    x = np.tile([0.0, 1.0], 10)
    y = 1.0 + 2.0 * x + np.repeat(np.random.normal(0, 0.5, 10), 2) + np.random.normal(0, 0.2, 20)
    return pd.DataFrame({
        "y": y,
        "x": x,
        "group": pd.Categorical(groups),
    })


@pytest.fixture
def sleepstudy_like():
    """
    A larger random-slope dataset: 12 subjects x 10 days.
    """
    rng = np.random.default_rng(7)
    subjects = np.repeat([f"S{i:02d}" for i in range(12)], 10)
    days = np.tile(np.arange(10.0), 12)
    u0 = np.repeat(rng.normal(0, 25, 12), 10)
    u1 = np.repeat(rng.normal(0, 6, 12), 10)
    reaction = 250 + 10 * days + u0 + u1 * days + rng.normal(0, 25, 120)
    return pd.DataFrame({
        "reaction": reaction,
        "days": days,
        "subject": pd.Categorical(subjects),
    })


@pytest.fixture
def recording_session():
    return RecordingSession()


@pytest.fixture
def log_records():
    """Capture records emitted on the merbridge logger."""
    from merbridge.helpers.log import get_logger

    records: List[logging.LogRecord] = []

    class _ListHandler(logging.Handler):
        def emit(self, record):
            records.append(record)

    logger = get_logger()
    handler = _ListHandler(level=logging.DEBUG)
    logger.addHandler(handler)
    try:
        yield records
    finally:
        logger.removeHandler(handler)


@pytest.fixture(scope="session")
def lme4_session():
    """A started BridgeSession; only used by requires_lme4 tests."""
    from merbridge import BridgeSession

    session = BridgeSession()
    yield session
    session.close()


def pytest_configure(config):
    """
    Custom pytest configuration.
    """
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')"
    )
    config.addinivalue_line(
        "markers", "requires_lme4: marks tests that need R, rpy2 and lme4"
    )


def _lme4_available() -> bool:
    try:
        from merbridge.runtime import is_package_installed

        return is_package_installed("lme4")
    except Exception:
        return False


def pytest_collection_modifyitems(config, items):
    """
    Automatically skip tests when required.
    """
    if not any("requires_lme4" in item.keywords for item in items):
        return

    if _lme4_available():
        return

    skip_requires_lme4 = pytest.mark.skip(
        reason="R/lme4 not available - run: python -c 'import merbridge; merbridge.install_lme4()'"
    )
    for item in items:
        if "requires_lme4" in item.keywords:
            item.add_marker(skip_requires_lme4)


@pytest.fixture
def make_conversion_payload():
    return conversion_payload


@pytest.fixture
def make_interval_payload():
    return interval_payload


@pytest.fixture
def session_factory():
    return RecordingSession
