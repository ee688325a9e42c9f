"""
merbridge: fit linear mixed models with R's lme4 from Python.

```python
import merbridge

fit = merbridge.lmer("y ~ 1 + x + (1 | group)", df)
print(fit.summary())

boot = merbridge.bootstrap(fit, n=1000, seed=9)
print(boot.table)
```
"""

from merbridge.functions import bootstrap, lmer
from merbridge.helpers.log import set_log_level
from merbridge.runtime import (
    BridgeSession,
    get_package_version,
    get_session,
    install_lme4,
    is_package_installed,
)
from merbridge.types import (
    BootstrapConfig,
    BootstrapResult,
    BridgeUnavailableError,
    ConfigurationError,
    FitConfig,
    Formula,
    FormulaError,
    MerbridgeError,
    MixedModelFit,
    RandomTerm,
    RSessionError,
    SummaryResult,
    formula,
)

__version__ = "0.1.0"
__license__ = "Apache-2.0"

__all__ = [
    # wrappers
    "lmer",
    "bootstrap",
    # session
    "BridgeSession",
    "get_session",
    "install_lme4",
    "is_package_installed",
    "get_package_version",
    # formula
    "Formula",
    "RandomTerm",
    "formula",
    # types
    "FitConfig",
    "BootstrapConfig",
    "MixedModelFit",
    "SummaryResult",
    "BootstrapResult",
    # errors
    "MerbridgeError",
    "BridgeUnavailableError",
    "RSessionError",
    "ConfigurationError",
    "FormulaError",
    # logging
    "set_log_level",
]
