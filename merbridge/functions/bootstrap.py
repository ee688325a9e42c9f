from typing import Mapping, Optional, Union

import pandas as pd

from ..commands import (
    BootstrapRequest,
    FitRequest,
    bootstrap_command,
    draws_expression,
    fit_command,
    interval_expression,
)
from ..helpers.log import LogTime, log
from ..runtime import BridgeSession, get_session
from ..types.errors import ConfigurationError
from ..types.formula import Formula, formula as _formula_fn
from ..types.results import BootstrapConfig, BootstrapResult, MixedModelFit
from .fit import _model_frame


def bootstrap(
    model: Union[MixedModelFit, Formula, str],
    n: int,
    coverage: float = 0.95,
    reml: bool = False,
    use_threads: bool = False,
    seed: int = 1234,
    ncpus: Optional[int] = None,
    keep_draws: bool = False,
    data: Optional[Union[pd.DataFrame, Mapping]] = None,
    session: Optional[BridgeSession] = None,
) -> BootstrapResult:
    """
    Parametric bootstrap of a linear mixed model, run in R.

    The model is refitted in R from its formula and data (a previous fit in
    the session is never reused), ``lme4::bootMer()`` simulates ``n``
    responses from the fitted model and refits each, and for every fixed
    effect, random-effect standard deviation, correlation and the residual
    standard deviation the shortest interval holding ``coverage`` of the
    replicate values is returned.

    [lme4 bootMer documentation](https://rdrr.io/cran/lme4/man/bootMer.html)

    Parameters
    ----------
    model : MixedModelFit, Formula or str
        A fit from [`lmer()`][merbridge.functions.fit.lmer] (its formula and
        data are used), or a formula together with ``data``.
    n : int
        Number of replicates; must be positive.
    coverage : float, default=0.95
        Interval coverage, strictly between 0 and 1.
    reml : bool, default=False
        Refit by REML.
    use_threads : bool, default=False
        Refit replicates on a local R cluster.
    seed : int, default=1234
        Seed for the simulation. The same model, data, seed and ``n`` give
        the same intervals.
    ncpus : int, optional
        Cluster size with ``use_threads``; defaults to every core.
    keep_draws : bool, default=False
        Also return the replicate values as ``draws``.
    data : pd.DataFrame or dict, optional
        Required when ``model`` is a formula; ignored otherwise.
    session : BridgeSession, optional
        Session to use; defaults to [`get_session()`][merbridge.runtime.get_session].

    Returns
    -------
    BootstrapResult
        ``table`` keyed by ``(type, group, names)`` with ``lower``/``upper``.

    Raises
    ------
    ConfigurationError
        For a non-positive ``n``, ``coverage`` outside (0, 1) or other bad
        options. Raised before anything is sent to R.
    RSessionError
        If R fails.

    Examples
    --------
    ```python
    import merbridge

    fit = merbridge.lmer("y ~ 1 + x + (1 | group)", df)
    boot = merbridge.bootstrap(fit, n=1000, seed=9)
    print(boot.table)
    boot.interval("beta", names="x")
    ```
    """
    config = BootstrapConfig(
        n=n,
        coverage=coverage,
        seed=seed,
        reml=reml,
        use_threads=use_threads,
        ncpus=ncpus,
        keep_draws=keep_draws,
    )

    if isinstance(model, MixedModelFit):
        f, frame = model.formula, model.data
    elif isinstance(model, (Formula, str)):
        if data is None:
            raise ConfigurationError("data is required when bootstrapping from a formula")
        f = _formula_fn(model)
        frame = _model_frame(f, data)
    else:
        raise ConfigurationError(
            f"model must be a MixedModelFit or a formula, got {type(model).__name__}"
        )

    if session is None:
        session = get_session()

    fit_req = FitRequest(formula=f, reml=config.reml)
    boot_req = BootstrapRequest(
        n=config.n,
        seed=config.seed,
        use_threads=config.use_threads,
        ncpus=config.ncpus,
        model_name=fit_req.model_name,
    )

    log(f"Refitting {f} for {config.n} bootstrap replicates (seed {config.seed})...")
    session.assign(fit_req.data_name, frame)
    session.run(fit_command(fit_req))

    with LogTime("bootstrap"):
        session.run(bootstrap_command(boot_req))

    raw = session.evaluate(
        interval_expression(config.coverage, fit_req.model_name, boot_req.boot_name)
    )
    table = BootstrapResult._tidy(raw)

    draws = None
    if config.keep_draws:
        draws = pd.DataFrame(session.evaluate(draws_expression(boot_req.boot_name)))
        draws = draws.reset_index(drop=True)
        draws.columns = BootstrapResult.labels(table)

    return BootstrapResult(
        table=table,
        n=config.n,
        coverage=config.coverage,
        seed=config.seed,
        draws=draws,
    )
