from .bootstrap import bootstrap
from .fit import lmer

__all__ = ["lmer", "bootstrap"]
