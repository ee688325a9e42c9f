"""
Error types exposed by merbridge.

Setup problems (rpy2, R or lme4 missing) raise `BridgeUnavailableError`.
Failures reported by R itself raise `RSessionError`, carrying R's own message
text and, when available, the R traceback. Invalid options raise
`ConfigurationError` before anything is sent across the bridge.

Model non-convergence is not an error; it is reported on the returned
[`MixedModelFit`][merbridge.types.results.MixedModelFit].
"""

from __future__ import annotations


class MerbridgeError(Exception):
    """Base class for all merbridge errors."""


class BridgeUnavailableError(MerbridgeError, RuntimeError):
    """
    Raised when the R bridge cannot be used.

    Covers a missing rpy2 installation, an R interpreter that cannot be
    located or embedded, a missing lme4 package and calls made on a closed
    session. These are fatal and never retried; the message points at the
    relevant installation step.
    """


class RSessionError(MerbridgeError, RuntimeError):
    """
    Error raised when R fails while running a bridge command.

    Parameters
    ----------
    message : str
        The R error message, passed through untranslated.
    remote_traceback : str or None, default=None
        Best-effort R traceback text.
    source : str or None, default=None
        The R source that was being executed.
    """

    def __init__(
        self,
        message: str,
        remote_traceback: str | None = None,
        source: str | None = None,
    ) -> None:
        super().__init__(message)
        self.remote_traceback = remote_traceback
        self.source = source

    def __str__(self) -> str:
        """Return message plus the remote traceback (if available)."""
        base = super().__str__()
        if self.remote_traceback:
            return f"{base}\n\nRemote traceback:\n{self.remote_traceback}\n\n"
        return base


class ConfigurationError(MerbridgeError, ValueError):
    """
    Raised for invalid fit or bootstrap options.

    Always raised before any bridge primitive is called.
    """


class FormulaError(ConfigurationError):
    """
    Raised when a model formula cannot be parsed.

    Parameters
    ----------
    message : str
        What is wrong.
    text : str or None, default=None
        The formula text that failed to parse.
    """

    def __init__(self, message: str, text: str | None = None) -> None:
        if text is not None:
            message = f"{message} (in formula {text!r})"
        super().__init__(message)
        self.text = text
