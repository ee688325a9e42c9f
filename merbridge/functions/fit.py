from typing import Mapping, Optional, Union

import pandas as pd

from ..commands import FitRequest, conversion_expression, fit_command
from ..helpers.log import LogTime, log
from ..runtime import BridgeSession, get_session
from ..types.errors import ConfigurationError
from ..types.formula import Formula, formula as _formula_fn
from ..types.results import FitConfig, MixedModelFit


def _model_frame(f: Formula, data: Union[pd.DataFrame, Mapping]) -> pd.DataFrame:
    """Check ``data`` against the formula before anything reaches R."""
    if isinstance(data, pd.DataFrame):
        frame = data
    elif isinstance(data, Mapping):
        try:
            frame = pd.DataFrame(dict(data))
        except ValueError as e:
            raise ConfigurationError(f"data columns cannot form a table: {e}") from e
    else:
        raise ConfigurationError(
            f"data must be a pandas DataFrame or a dict of columns, got {type(data).__name__}"
        )

    if frame.empty:
        raise ConfigurationError("data has no rows")

    columns = {str(c) for c in frame.columns}
    missing = [v for v in f.variables() if v not in columns]
    if missing:
        raise ConfigurationError(
            f"Formula {str(f)!r} refers to columns not in data: {missing}"
        )
    return frame


def lmer(
    formula: Union[Formula, str],
    data: Union[pd.DataFrame, Mapping],
    reml: bool = False,
    verbose: bool = False,
    session: Optional[BridgeSession] = None,
) -> MixedModelFit:
    """
    Fit a linear mixed-effects model with R's lme4.

    The data is copied into the R session, ``lme4::lmer()`` is run there,
    and the fitted model comes back as a
    [`MixedModelFit`][merbridge.types.results.MixedModelFit] holding pandas
    tables. Every call refits from scratch.

    [lme4 documentation](https://rdrr.io/cran/lme4/man/lmer.html)

    Parameters
    ----------
    formula : Formula or str
        lme4 formula, e.g. ``"reaction ~ days + (days | subject)"``.
        Random-effect terms must be parenthesised.
    data : pd.DataFrame or dict
        Model data. Categorical columns keep their level labels in R.
    reml : bool, default=False
        Fit by REML instead of maximum likelihood.
    verbose : bool, default=False
        Print optimizer progress from R.
    session : BridgeSession, optional
        Session to use; defaults to [`get_session()`][merbridge.runtime.get_session].

    Returns
    -------
    MixedModelFit
        The fitted model. A model lme4 flags as not converged is returned
        as is, with ``converged`` set to False and lme4's messages in
        ``convergence_messages``.

    Raises
    ------
    FormulaError
        If the formula cannot be parsed. Nothing is sent to R.
    ConfigurationError
        If options are invalid or the formula names columns missing from
        ``data``. Nothing is sent to R.
    RSessionError
        If R fails; the message is R's own.
    BridgeUnavailableError
        If R or lme4 are not available.

    See Also
    --------
    bootstrap : Parametric bootstrap intervals for a fitted model

    Examples
    --------
    ```python
    import merbridge

    fit = merbridge.lmer("y ~ 1 + x + (1 | group)", df)
    print(fit.summary())
    fit.fixed_effects.loc["x", "estimate"]
    ```

    Restricted likelihood, explicit session:

    ```python
    with merbridge.BridgeSession() as session:
        fit = merbridge.lmer(
            "reaction ~ days + (days | subject)",
            sleepstudy,
            reml=True,
            session=session,
        )
    ```
    """
    f = _formula_fn(formula)
    config = FitConfig(reml=reml, verbose=verbose)
    frame = _model_frame(f, data)

    if session is None:
        session = get_session()

    req = FitRequest(formula=f, reml=config.reml, verbose=config.verbose)

    log(f"Fitting {f} on {len(frame)} rows ({'REML' if config.reml else 'ML'})...")
    with LogTime("lmer"):
        session.assign(req.data_name, frame)
        session.run(fit_command(req))
        raw = session.evaluate(conversion_expression(req.model_name))

    return MixedModelFit.from_r(f, frame, raw)
