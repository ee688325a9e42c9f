from .errors import (
    BridgeUnavailableError,
    ConfigurationError,
    FormulaError,
    MerbridgeError,
    RSessionError,
)
from .formula import Formula, RandomTerm, formula
from .results import (
    BootstrapConfig,
    BootstrapResult,
    FitConfig,
    MixedModelFit,
    SummaryResult,
)

__all__ = [
    "BridgeUnavailableError",
    "ConfigurationError",
    "FormulaError",
    "MerbridgeError",
    "RSessionError",
    "Formula",
    "RandomTerm",
    "formula",
    "BootstrapConfig",
    "BootstrapResult",
    "FitConfig",
    "MixedModelFit",
    "SummaryResult",
]
