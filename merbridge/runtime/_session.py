from __future__ import annotations

import atexit
import traceback
import weakref
from typing import Any, Optional, Set

from ..commands import BOOT_NAME, DATA_NAME, MODEL_NAME, cleanup_command, r_name
from ..helpers.conversion import py_to_r, r_to_py
from ..helpers.log import log, log_debug, log_warning
from ..types.errors import BridgeUnavailableError, ConfigurationError, RSessionError
from ._r_packages import get_package_version, is_package_installed
from ._rsetup import initialise_r

_WORKING_NAMES = (DATA_NAME, MODEL_NAME, BOOT_NAME)

_LME4_HINT = (
    "The lme4 R package is not installed. Install it with:\n\n"
    "  import merbridge\n"
    "  merbridge.install_lme4()\n\n"
    "Or in R:\n"
    "  install.packages('lme4')\n"
)


def _preview(source: str, limit: int = 200) -> str:
    flat = " ".join(source.split())
    return flat if len(flat) <= limit else flat[:limit] + "..."


class BridgeSession:
    """
    Session with the embedded R interpreter.

    Exposes the three bridge primitives used by merbridge's wrappers:
    [`assign()`][merbridge.runtime.BridgeSession.assign],
    [`run()`][merbridge.runtime.BridgeSession.run] and
    [`evaluate()`][merbridge.runtime.BridgeSession.evaluate].

    R is embedded once per process, so sessions share one interpreter; each
    session removes the working names it used when it is closed. Calls block
    until R returns. One caller at a time: the working names are shared
    slots and concurrent calls would overwrite each other.

    Parameters
    ----------
    autostart : bool, default=True
        Start R immediately; otherwise on the first ``start()`` or ``with``.
    require_lme4 : bool, default=True
        Fail at start-up if lme4 is not installed.

    Examples
    --------
    ```python
    from merbridge import BridgeSession, lmer

    with BridgeSession() as session:
        fit = lmer("y ~ x + (1 | g)", df, session=session)
        print(fit.summary())
    ```
    """

    _instances: "weakref.WeakSet[BridgeSession]" = weakref.WeakSet()
    _atexit_registered: bool = False

    def __init__(self, autostart: bool = True, require_lme4: bool = True) -> None:
        self.require_lme4 = require_lme4
        self._started = False
        self._closed = False
        self._names: Set[str] = set(_WORKING_NAMES)
        if autostart:
            self.start()

    @classmethod
    def _cleanup_all(cls) -> None:
        for sess in list(cls._instances):
            try:
                sess.close()
            except Exception:
                pass

    # ---- lifecycle --------------------------------------------------------

    @property
    def started(self) -> bool:
        return self._started

    @property
    def closed(self) -> bool:
        return self._closed

    def start(self) -> "BridgeSession":
        """
        Start R (once) and check that lme4 is available.

        Raises
        ------
        BridgeUnavailableError
            If the session was closed, rpy2/R are missing, or lme4 is not
            installed.
        """
        if self._closed:
            raise BridgeUnavailableError("This BridgeSession is closed; create a new one.")
        if self._started:
            return self

        initialise_r()
        if self.require_lme4 and not is_package_installed("lme4"):
            raise BridgeUnavailableError(_LME4_HINT)

        self._started = True
        BridgeSession._instances.add(self)
        if not BridgeSession._atexit_registered:
            atexit.register(BridgeSession._cleanup_all)
            BridgeSession._atexit_registered = True

        log(f"R session ready ({self.r_version()}, lme4 {self.lme4_version()})")
        return self

    def close(self) -> None:
        """Remove this session's working names from R. Idempotent."""
        if self._closed:
            return
        if self._started:
            try:
                self.run(cleanup_command(sorted(self._names)))
            except RSessionError as e:
                log_warning(f"Could not remove working names: {e}")
        self._closed = True
        BridgeSession._instances.discard(self)
        log_debug("session closed")

    def __enter__(self) -> "BridgeSession":
        return self.start()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def _ensure_open(self) -> None:
        if self._closed:
            raise BridgeUnavailableError("This BridgeSession is closed; create a new one.")
        if not self._started:
            self.start()

    # ---- primitives -------------------------------------------------------

    def assign(self, name: str, value: Any) -> None:
        """
        Copy a Python value into R's global environment under ``name``.

        DataFrames become data.frames; categorical columns become factors
        with the same level labels.

        Raises
        ------
        ConfigurationError
            If ``name`` is not a valid R name or the data has duplicate
            column names.
        RSessionError
            If the value cannot be converted.
        """
        r_name(name)
        self._ensure_open()

        import rpy2.robjects as ro
        from rpy2.rinterface_lib.embedded import RRuntimeError

        log_debug(f"assign {name} <- {type(value).__name__}")
        try:
            r_value = py_to_r(value)
            ro.globalenv[name] = r_value
        except ConfigurationError:
            raise
        except RRuntimeError as e:
            raise RSessionError(str(e).strip()) from e
        except Exception as e:
            raise RSessionError(
                f"Cannot transfer {type(value).__name__} to R as {name!r}: {e}",
                remote_traceback=traceback.format_exc(),
            ) from e
        self._names.add(name)

    def run(self, source: str) -> None:
        """Execute R source for its side effects."""
        self._execute(source)

    def evaluate(self, source: str, want_return: bool = True) -> Any:
        """
        Execute an R expression and convert its value to Python.

        Parameters
        ----------
        source : str
            R expression.
        want_return : bool, default=True
            If False the value is discarded and ``None`` returned.

        Returns
        -------
        Any
            ``data.frame`` -> ``pd.DataFrame``, named list -> ``dict``,
            length-1 vector -> scalar, ``NULL`` -> ``None``.
        """
        value = self._execute(source)
        if not want_return:
            return None
        return r_to_py(value)

    def _execute(self, source: str) -> Any:
        self._ensure_open()

        import rpy2.robjects as ro
        from rpy2.rinterface_lib import openrlib
        from rpy2.rinterface_lib.embedded import RRuntimeError

        log_debug(_preview(source))
        try:
            with openrlib.rlock:
                return ro.r(source)
        except RRuntimeError as e:
            raise RSessionError(str(e).strip(), source=source) from e

    # ---- queries ----------------------------------------------------------

    def r_version(self) -> str:
        return str(self.evaluate("R.version.string"))

    def lme4_version(self) -> Optional[str]:
        return get_package_version("lme4")


_default: Optional[BridgeSession] = None


def get_session() -> BridgeSession:
    """
    Return the process-wide default session, starting it on first use.

    Functions that take ``session=None`` use this session.
    """
    global _default
    if _default is None or _default.closed:
        _default = BridgeSession()
    return _default
