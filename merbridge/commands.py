"""
R source text for every command merbridge sends across the bridge.

All R code is produced here, from small request dataclasses, so the mapping
from Python options to R arguments can be tested without R. Values are
written with [`r_literal()`][merbridge.commands.r_literal]; formulas travel
as quoted strings and are parsed on the R side with ``stats::as.formula``.

Working names are shared slots in R's global environment. A session serves
one caller at a time; two interleaved calls would overwrite each other's
data and model.
"""

import math
import re
from dataclasses import dataclass
from typing import Any, Iterable, Optional

import numpy as np

from .types.errors import ConfigurationError
from .types.formula import Formula

__all__ = [
    "DATA_NAME",
    "MODEL_NAME",
    "BOOT_NAME",
    "r_literal",
    "r_name",
    "FitRequest",
    "BootstrapRequest",
    "fit_command",
    "conversion_expression",
    "bootstrap_command",
    "interval_expression",
    "draws_expression",
    "cleanup_command",
]

DATA_NAME = ".merbridge_data"
MODEL_NAME = ".merbridge_model"
BOOT_NAME = ".merbridge_boot"

_R_INT_MAX = 2**31 - 1

_R_NAME = re.compile(r"^(?:[A-Za-z]|\.(?![0-9]))[A-Za-z0-9._]*$")
_R_RESERVED = frozenset({
    "if", "else", "repeat", "while", "function", "for", "next", "break",
    "in", "TRUE", "FALSE", "NULL", "Inf", "NaN", "NA", "NA_integer_",
    "NA_real_", "NA_complex_", "NA_character_", "...",
})

_ESCAPES = {
    "\\": "\\\\",
    '"': '\\"',
    "\n": "\\n",
    "\r": "\\r",
    "\t": "\\t",
    "\0": "",
}


def _escape(s: str) -> str:
    out = []
    for ch in s:
        if ch in _ESCAPES:
            out.append(_ESCAPES[ch])
        elif ord(ch) < 0x20 or ord(ch) == 0x7F:
            out.append(f"\\x{ord(ch):02x}")
        else:
            out.append(ch)
    return "".join(out)


def r_literal(value: Any) -> str:
    """
    Write a Python value as R source.

    Parameters
    ----------
    value : None, bool, int, float, str or sequence of those
        Value to write. Sequences become ``c(...)``.

    Returns
    -------
    str
        R source text.

    Raises
    ------
    ConfigurationError
        If the value has no R literal form.

    Examples
    --------
    >>> r_literal(True)
    'TRUE'
    >>> r_literal(5)
    '5L'
    >>> r_literal([1.5, float("nan")])
    'c(1.5, NA_real_)'
    """
    if value is None:
        return "NULL"
    if isinstance(value, (bool, np.bool_)):
        return "TRUE" if value else "FALSE"
    if isinstance(value, (int, np.integer)):
        value = int(value)
        if abs(value) <= _R_INT_MAX:
            return f"{value}L"
        return repr(float(value))
    if isinstance(value, (float, np.floating)):
        value = float(value)
        if math.isnan(value):
            return "NA_real_"
        if math.isinf(value):
            return "Inf" if value > 0 else "-Inf"
        return repr(value)
    if isinstance(value, str):
        return f'"{_escape(value)}"'
    if isinstance(value, (list, tuple, np.ndarray)):
        return "c(" + ", ".join(r_literal(v) for v in value) + ")"
    raise ConfigurationError(f"Cannot write {type(value).__name__} as an R literal")


def r_name(name: str) -> str:
    """
    Validate an R variable name used as a bridge working name.

    Returns the name unchanged; raises ``ConfigurationError`` if it is not a
    syntactic, non-reserved R name.
    """
    if not isinstance(name, str) or not _R_NAME.match(name) or name in _R_RESERVED:
        raise ConfigurationError(f"{name!r} is not a valid R variable name")
    return name


@dataclass(frozen=True)
class FitRequest:
    """Everything needed to write an ``lme4::lmer`` call."""
    formula: Formula
    reml: bool = False
    verbose: bool = False
    data_name: str = DATA_NAME
    model_name: str = MODEL_NAME

    def __post_init__(self):
        r_name(self.data_name)
        r_name(self.model_name)


@dataclass(frozen=True)
class BootstrapRequest:
    """Everything needed to write a seeded ``lme4::bootMer`` call."""
    n: int
    seed: int
    use_threads: bool = False
    ncpus: Optional[int] = None
    model_name: str = MODEL_NAME
    boot_name: str = BOOT_NAME

    def __post_init__(self):
        r_name(self.model_name)
        r_name(self.boot_name)


def fit_command(req: FitRequest) -> str:
    """
    R statement that fits the model and binds it to ``req.model_name``.

    Examples
    --------
    >>> fit_command(FitRequest(Formula.parse("y ~ x + (1|g)")))
    '.merbridge_model <- lme4::lmer(stats::as.formula("y ~ 1 + x + (1 | g)"), data = .merbridge_data, REML = FALSE, verbose = 0L)'
    """
    return (
        f"{req.model_name} <- lme4::lmer("
        f"stats::as.formula({r_literal(req.formula.to_r())}), "
        f"data = {req.data_name}, "
        f"REML = {r_literal(bool(req.reml))}, "
        f"verbose = {r_literal(1 if req.verbose else 0)})"
    )


# Variance components in a fixed order; shared by the model conversion,
# the bootstrap statistic and the interval table so rows line up.
_VARCORR = 'as.data.frame(lme4::VarCorr({m}), order = "lower.tri")'


def conversion_expression(model_name: str = MODEL_NAME) -> str:
    """
    R expression that flattens a fitted ``merMod`` into plain tables.

    Evaluates to a named list with ``fixed`` and ``varcorr`` data frames,
    fit statistics, group counts, the formula text, lme4's convergence
    report and whether the fit is singular. The singular-fit note is left
    out of the convergence messages. Missing strings are written as ``""``.
    """
    m = r_name(model_name)
    varcorr = _VARCORR.format(m="m")
    return f"""local({{
  m <- {m}
  cf <- stats::coef(summary(m))
  vc <- {varcorr}
  conv <- m@optinfo$conv
  code <- conv$lme4$code
  if (is.null(code)) code <- conv$opt
  if (is.null(code)) code <- 0L
  msgs <- as.character(unlist(conv$lme4$messages))
  # the singular-fit note is reported through isSingular instead
  msgs <- msgs[!grepl("boundary (singular) fit", msgs, fixed = TRUE)]
  list(
    fixed = data.frame(
      term = rownames(cf),
      estimate = unname(cf[, 1L]),
      std_error = unname(cf[, 2L]),
      t_value = unname(cf[, 3L]),
      stringsAsFactors = FALSE,
      row.names = NULL
    ),
    varcorr = data.frame(
      group = vc$grp,
      var1 = ifelse(is.na(vc$var1), "", vc$var1),
      var2 = ifelse(is.na(vc$var2), "", vc$var2),
      vcov = vc$vcov,
      sdcor = vc$sdcor,
      stringsAsFactors = FALSE,
      row.names = NULL
    ),
    formula = paste(deparse(stats::formula(m)), collapse = " "),
    reml = lme4::isREML(m),
    loglik = as.numeric(stats::logLik(m)),
    df = as.integer(attr(stats::logLik(m), "df")),
    aic = stats::AIC(m),
    bic = stats::BIC(m),
    criterion = if (lme4::isREML(m)) lme4::REMLcrit(m) else stats::deviance(m),
    sigma = stats::sigma(m),
    nobs = as.integer(stats::nobs(m)),
    ngroups = as.list(lme4::ngrps(m)),
    convergence_code = as.integer(code),
    convergence_messages = as.list(msgs),
    singular = lme4::isSingular(m)
  )
}})"""


def bootstrap_command(req: BootstrapRequest) -> str:
    """
    R statement running a seeded parametric bootstrap of ``req.model_name``.

    Each replicate records the fixed effects followed by every
    standard deviation and correlation of the variance components, in the
    order used by [`interval_expression()`][merbridge.commands.interval_expression].
    With ``use_threads`` the refits run on a local PSOCK cluster; responses
    are simulated up front from the seed, so results do not depend on it.
    """
    if req.use_threads:
        parallel = r_literal("snow")
        ncpus = r_literal(req.ncpus) if req.ncpus is not None else "parallel::detectCores()"
    else:
        parallel = r_literal("no")
        ncpus = r_literal(1)

    varcorr = _VARCORR.format(m="fit")
    return (
        f"{req.boot_name} <- lme4::bootMer("
        f"{req.model_name}, "
        f"FUN = function(fit) c(lme4::fixef(fit), {varcorr}$sdcor), "
        f"nsim = {r_literal(req.n)}, "
        f"seed = {r_literal(req.seed)}, "
        f'type = "parametric", use.u = FALSE, '
        f"parallel = {parallel}, ncpus = {ncpus})"
    )


def interval_expression(
    coverage: float,
    model_name: str = MODEL_NAME,
    boot_name: str = BOOT_NAME,
) -> str:
    """
    R expression giving the shortest coverage interval of every parameter.

    For ``n`` finite replicate values the interval spans ``ceiling(coverage * n)``
    consecutive sorted values, choosing the narrowest such window. Evaluates
    to a data frame with columns ``type`` (``"beta"``, ``"sigma"``, ``"rho"``),
    ``group``, ``names``, ``lower`` and ``upper``.
    """
    m = r_name(model_name)
    b = r_name(boot_name)
    varcorr = _VARCORR.format(m="m")
    return f"""local({{
  m <- {m}
  level <- {r_literal(float(coverage))}
  fe <- names(lme4::fixef(m))
  vc <- {varcorr}
  rho <- !is.na(vc$var2)
  var1 <- ifelse(is.na(vc$var1), "", vc$var1)
  key <- data.frame(
    type = c(rep("beta", length(fe)), ifelse(rho, "rho", "sigma")),
    group = c(rep("", length(fe)), vc$grp),
    names = c(fe, ifelse(rho, paste(var1, vc$var2, sep = ", "), var1)),
    stringsAsFactors = FALSE
  )
  shortest <- function(v) {{
    v <- sort(v[is.finite(v)])
    n <- length(v)
    if (n == 0L) return(c(NA_real_, NA_real_))
    k <- max(1L, ceiling(level * n))
    if (k >= n) return(c(v[1L], v[n]))
    w <- v[k:n] - v[1L:(n - k + 1L)]
    i <- which.min(w)
    c(v[i], v[i + k - 1L])
  }}
  bounds <- matrix(apply({b}$t, 2L, shortest), nrow = 2L)
  key$lower <- bounds[1L, ]
  key$upper <- bounds[2L, ]
  key
}})"""


def draws_expression(boot_name: str = BOOT_NAME) -> str:
    """R expression giving the replicate draws as an unnamed data frame."""
    return f"as.data.frame(unname({r_name(boot_name)}$t))"


def cleanup_command(names: Iterable[str]) -> str:
    """R statement removing working names from the global environment."""
    names = [r_name(n) for n in names]
    return (
        f"suppressWarnings(rm(list = {r_literal(names)}, envir = globalenv()))"
    )
