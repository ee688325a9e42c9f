"""Configuration and result types for merbridge functions."""

import math
import numbers
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Tuple

import numpy as np
import pandas as pd

from .errors import ConfigurationError
from .formula import Formula

_R_INT_MAX = 2**31 - 1


def _is_int(value: Any) -> bool:
    # numpy integers count, numpy bools do not
    return isinstance(value, numbers.Integral) and not isinstance(value, (bool, np.bool_))


def _check_bool(config: Any, name: str) -> None:
    value = getattr(config, name)
    if not isinstance(value, (bool, np.bool_)):
        raise ConfigurationError(f"{name} must be a bool, got {value!r}")
    object.__setattr__(config, name, bool(value))


def _set_int(config: Any, name: str) -> None:
    value = getattr(config, name)
    if value is not None:
        object.__setattr__(config, name, int(value))


@dataclass(frozen=True)
class FitConfig:
    """
    Options for [`lmer()`][merbridge.functions.fit.lmer].

    Attributes
    ----------
    reml : bool
        Fit by restricted maximum likelihood instead of maximum likelihood.
    verbose : bool
        Print optimizer progress from R.
    """
    reml: bool = False
    verbose: bool = False

    def __post_init__(self):
        _check_bool(self, "reml")
        _check_bool(self, "verbose")


@dataclass(frozen=True)
class BootstrapConfig:
    """
    Options for [`bootstrap()`][merbridge.functions.bootstrap.bootstrap].

    Attributes
    ----------
    n : int
        Number of bootstrap replicates, at least 1.
    coverage : float
        Probability mass of each interval, strictly between 0 and 1.
    seed : int
        Random seed for the replicate simulation.
    reml : bool
        Refit by restricted maximum likelihood.
    use_threads : bool
        Refit replicates on a local R cluster.
    ncpus : int, optional
        Cluster size when ``use_threads`` is set; ``None`` uses every core.
    keep_draws : bool
        Also bring back the raw replicate values.

    Raises
    ------
    ConfigurationError
        On any invalid option.
    """
    n: int
    coverage: float = 0.95
    seed: int = 1234
    reml: bool = False
    use_threads: bool = False
    ncpus: Optional[int] = None
    keep_draws: bool = False

    def __post_init__(self):
        if not _is_int(self.n) or self.n <= 0:
            raise ConfigurationError(f"n must be a positive integer, got {self.n!r}")
        if self.n > _R_INT_MAX:
            raise ConfigurationError(f"n must be at most {_R_INT_MAX}, got {self.n!r}")

        if isinstance(self.coverage, bool) or not isinstance(self.coverage, (int, float)):
            raise ConfigurationError(f"coverage must be a number, got {self.coverage!r}")
        if not math.isfinite(self.coverage) or not 0 < self.coverage < 1:
            raise ConfigurationError(
                f"coverage must lie strictly between 0 and 1, got {self.coverage!r}"
            )

        if not _is_int(self.seed) or abs(self.seed) > _R_INT_MAX:
            raise ConfigurationError(
                f"seed must be an integer within R's integer range, got {self.seed!r}"
            )

        _check_bool(self, "reml")
        _check_bool(self, "use_threads")
        _check_bool(self, "keep_draws")

        if self.ncpus is not None and (not _is_int(self.ncpus) or self.ncpus <= 0):
            raise ConfigurationError(
                f"ncpus must be a positive integer or None, got {self.ncpus!r}"
            )

        _set_int(self, "n")
        _set_int(self, "seed")
        _set_int(self, "ncpus")


@dataclass(frozen=True)
class SummaryResult:
    """
    lme4-style summary of a fitted model.

    ``str()`` gives a printout laid out like ``summary()`` of an R
    ``merMod``; the attributes give the same numbers as Python objects.

    Attributes
    ----------
    formula : str
        Canonical formula text.
    reml : bool
        Whether the fit used REML.
    nobs : int
        Number of observations.
    ngroups : dict
        Number of levels per grouping factor.
    loglik, aic, bic, criterion : float
        Fit statistics; ``criterion`` is the REML criterion or the deviance.
    random : pd.DataFrame
        Columns ``group``, ``name``, ``variance``, ``std_dev``.
    correlations : pd.DataFrame
        Columns ``group``, ``var1``, ``var2``, ``corr``; empty without
        correlated random effects.
    fixed : pd.DataFrame
        Indexed by term, columns ``estimate``, ``std_error``, ``t_value``.
    converged : bool
    convergence_messages : tuple of str
    singular : bool
        Whether a variance component was estimated on its boundary.
    """
    formula: str
    reml: bool
    nobs: int
    ngroups: Dict[str, int]
    loglik: float
    aic: float
    bic: float
    criterion: float
    random: pd.DataFrame
    correlations: pd.DataFrame
    fixed: pd.DataFrame
    converged: bool = True
    convergence_messages: Tuple[str, ...] = ()
    singular: bool = False

    def __str__(self) -> str:
        method = "REML" if self.reml else "maximum likelihood"
        crit_label = "REML criterion" if self.reml else "deviance"
        lines = [
            f"Linear mixed model fit by {method}",
            f"Formula: {self.formula}",
            "",
            f"     AIC: {self.aic:.4f}",
            f"     BIC: {self.bic:.4f}",
            f"  logLik: {self.loglik:.4f}",
            f"  {crit_label}: {self.criterion:.4f}",
            "",
            "Random effects:",
        ]

        random = self.random.rename(columns={
            "group": "Groups", "name": "Name", "variance": "Variance", "std_dev": "Std.Dev.",
        })
        lines.append(random.to_string(index=False))

        if len(self.correlations):
            lines.append("Correlations:")
            lines.append(self.correlations.to_string(index=False))

        groups = ", ".join(f"{g}, {k}" for g, k in self.ngroups.items())
        lines.append(f"Number of obs: {self.nobs}, groups:  {groups}")
        lines.append("")
        lines.append("Fixed effects:")

        fixed = self.fixed.rename(columns={
            "estimate": "Estimate", "std_error": "Std. Error", "t_value": "t value",
        })
        lines.append(fixed.to_string())

        if not self.converged:
            lines.append("")
            lines.append("Convergence warnings:")
            lines.extend(f"  {m}" for m in self.convergence_messages)

        if self.singular:
            lines.append("")
            lines.append("boundary (singular) fit: see help('isSingular')")

        return "\n".join(lines)


@dataclass(frozen=True)
class MixedModelFit:
    """
    Host-side handle for a linear mixed model fitted by lme4.

    Holds the original formula and data together with every table lme4
    reports, as pandas objects. The R model object itself stays in R.

    Attributes
    ----------
    formula : Formula
        The formula the model was fitted with.
    data : pd.DataFrame
        The data the model was fitted on.
    fixed_effects : pd.DataFrame
        Indexed by term, columns ``estimate``, ``std_error``, ``t_value``.
    varcorr : pd.DataFrame
        One row per variance component: ``group``, ``var1``, ``var2``
        (``None`` where R has ``NA``), ``vcov``, ``sdcor``.
    reml : bool
    loglik, aic, bic, criterion, sigma : float
    df : int
        Number of estimated parameters.
    nobs : int
    ngroups : dict
        Number of levels per grouping factor.
    convergence_code : int
        lme4's convergence code, ``0`` when the optimizer reported success.
    convergence_messages : tuple of str
        lme4's convergence warnings, if any.
        The singular-fit note is not among them.
    singular : bool
        Whether lme4 found the fit singular, with a variance component on
        its boundary. A singular fit can still be converged.
    r_formula : str
        The formula as R deparses it.

    Notes
    -----
    A model that failed to converge is still returned; check
    ``converged`` before relying on the estimates.
    """
    formula: Formula
    data: pd.DataFrame = field(repr=False)
    fixed_effects: pd.DataFrame = field(repr=False)
    varcorr: pd.DataFrame = field(repr=False)
    reml: bool = False
    loglik: float = math.nan
    df: int = 0
    aic: float = math.nan
    bic: float = math.nan
    criterion: float = math.nan
    sigma: float = math.nan
    nobs: int = 0
    ngroups: Dict[str, int] = field(default_factory=dict)
    convergence_code: int = 0
    convergence_messages: Tuple[str, ...] = ()
    singular: bool = False
    r_formula: str = ""

    @classmethod
    def from_r(cls, formula: Formula, data: pd.DataFrame, raw: Mapping[str, Any]) -> "MixedModelFit":
        """
        Build from the value of
        [`conversion_expression()`][merbridge.commands.conversion_expression].
        """
        fixed = pd.DataFrame(raw["fixed"]).reset_index(drop=True)
        fixed = fixed.set_index("term")
        fixed.index.name = None

        varcorr = pd.DataFrame(raw["varcorr"]).reset_index(drop=True)
        for col in ("group", "var1", "var2"):
            varcorr[col] = [None if v == "" else str(v) for v in varcorr[col]]

        messages = raw.get("convergence_messages") or []
        if isinstance(messages, str):
            messages = [messages]

        ngroups = raw.get("ngroups") or {}

        return cls(
            formula=formula,
            data=data,
            fixed_effects=fixed,
            varcorr=varcorr,
            reml=bool(raw["reml"]),
            loglik=float(raw["loglik"]),
            df=int(raw["df"]),
            aic=float(raw["aic"]),
            bic=float(raw["bic"]),
            criterion=float(raw["criterion"]),
            sigma=float(raw["sigma"]),
            nobs=int(raw["nobs"]),
            ngroups={str(k): int(v) for k, v in ngroups.items()},
            convergence_code=int(raw.get("convergence_code") or 0),
            convergence_messages=tuple(str(m) for m in messages),
            singular=bool(raw.get("singular", False)),
            r_formula=str(raw.get("formula") or ""),
        )

    @property
    def converged(self) -> bool:
        """True when lme4 reported neither a failure code nor warnings."""
        return self.convergence_code == 0 and not self.convergence_messages

    def coef_table(self) -> pd.DataFrame:
        """Fixed-effect estimates, standard errors and t values."""
        return self.fixed_effects

    def summary(self) -> SummaryResult:
        """
        Summarise the fit.

        Returns
        -------
        SummaryResult
            Printable summary; ``print(fit.summary())`` mirrors R's output.
        """
        is_sd = self.varcorr["var2"].isna()
        sds = self.varcorr[is_sd]
        random = pd.DataFrame({
            "group": sds["group"].tolist(),
            "name": ["" if v is None else v for v in sds["var1"]],
            "variance": sds["vcov"].tolist(),
            "std_dev": sds["sdcor"].tolist(),
        })
        cors = self.varcorr[~is_sd]
        correlations = pd.DataFrame({
            "group": cors["group"].tolist(),
            "var1": cors["var1"].tolist(),
            "var2": cors["var2"].tolist(),
            "corr": cors["sdcor"].tolist(),
        })
        return SummaryResult(
            formula=str(self.formula),
            reml=self.reml,
            nobs=self.nobs,
            ngroups=dict(self.ngroups),
            loglik=self.loglik,
            aic=self.aic,
            bic=self.bic,
            criterion=self.criterion,
            random=random,
            correlations=correlations,
            fixed=self.fixed_effects,
            converged=self.converged,
            convergence_messages=self.convergence_messages,
            singular=self.singular,
        )


@dataclass(frozen=True)
class BootstrapResult:
    """
    Shortest-coverage intervals from a parametric bootstrap.

    Attributes
    ----------
    table : pd.DataFrame
        One row per parameter with columns ``type`` (``"beta"`` for fixed
        effects, ``"sigma"`` for standard deviations, ``"rho"`` for
        correlations), ``group`` (``None`` for fixed effects, ``"Residual"``
        for the residual standard deviation), ``names``, ``lower``, ``upper``.
    n : int
        Number of replicates.
    coverage : float
    seed : int
    draws : pd.DataFrame, optional
        Replicate values, one column per ``table`` row, when requested.
    """
    table: pd.DataFrame
    n: int
    coverage: float
    seed: int
    draws: Optional[pd.DataFrame] = None

    @staticmethod
    def _tidy(raw: pd.DataFrame) -> pd.DataFrame:
        table = pd.DataFrame(raw).reset_index(drop=True)
        for col in ("group", "names"):
            table[col] = [None if v == "" or v is None else str(v) for v in table[col]]
        table["type"] = table["type"].astype(str)
        table["lower"] = table["lower"].astype(float)
        table["upper"] = table["upper"].astype(float)
        return table[["type", "group", "names", "lower", "upper"]]

    @staticmethod
    def labels(table: pd.DataFrame) -> list:
        """Column labels for ``draws``, e.g. ``"sigma:g:(Intercept)"``."""
        return [
            ":".join(str(p) for p in (t, g, n) if p is not None)
            for t, g, n in zip(table["type"], table["group"], table["names"])
        ]

    @property
    def widths(self) -> pd.Series:
        """``upper - lower`` for every row."""
        return self.table["upper"] - self.table["lower"]

    def interval(self, type: str, group: Optional[str] = None, names: Optional[str] = None) -> Tuple[float, float]:
        """
        Look up one interval.

        Parameters
        ----------
        type : str
            ``"beta"``, ``"sigma"`` or ``"rho"``.
        group : str, optional
            Grouping factor; ``None`` for fixed effects.
        names : str, optional
            Parameter name, e.g. ``"(Intercept)"``; ``None`` for the residual.

        Returns
        -------
        tuple of float
            ``(lower, upper)``

        Raises
        ------
        KeyError
            If no row matches.
        """
        t = self.table
        mask = (t["type"] == type) & (t["names"].map(lambda v: v == names)) & (
            t["group"].map(lambda v: v == group)
        )
        rows = t[mask]
        if rows.empty:
            raise KeyError((type, group, names))
        row = rows.iloc[0]
        return float(row["lower"]), float(row["upper"])
