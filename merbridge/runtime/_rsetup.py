"""
Embedded R start-up.

R can be embedded once per process. Everything here is idempotent and runs
before the first rpy2.robjects import.
"""

import os
import subprocess
import sys

from ..helpers.log import log_debug, log_warning
from ..types.errors import BridgeUnavailableError

_INSTALL_HINT = (
    "merbridge needs R (https://cran.r-project.org) and the rpy2 Python "
    "package. Install R, make sure `R` is on your PATH or R_HOME is set, then:\n\n"
    "  pip install rpy2\n"
    "  python -c 'import merbridge; merbridge.install_lme4()'\n"
)

_initialised = False


def _initialise_rpaths() -> None:
    """Set R_HOME from `R RHOME` when it is not already set."""
    if os.environ.get("R_HOME"):
        return
    try:
        r_home = subprocess.check_output(
            ["R", "RHOME"], text=True, timeout=30
        ).strip()
    except (OSError, subprocess.SubprocessError):
        # Let rpy2 try its own discovery; it fails loudly if R is missing
        return
    if r_home:
        os.environ["R_HOME"] = r_home
        log_debug(f"R_HOME set to {r_home}")


def initialise_r() -> None:
    """
    Start the embedded R interpreter.

    - Locate R_HOME
    - Prefer rpy2 ABI mode (must be set before importing rpy2)
    - Disable fork-based R parallelism (mclapply, future::multicore)

    Raises
    ------
    BridgeUnavailableError
        If rpy2 is not installed or R cannot be embedded.
    """
    global _initialised
    if _initialised:
        return

    _initialise_rpaths()

    if "rpy2" in sys.modules:
        if os.environ.get("RPY2_CFFI_MODE") != "ABI":
            log_warning(
                "rpy2 was imported before merbridge; cannot enforce "
                "RPY2_CFFI_MODE=ABI. API and BOTH modes are known to be less stable."
            )
    os.environ.setdefault("RPY2_CFFI_MODE", "ABI")

    try:
        import rpy2.robjects as ro
    except ImportError as e:
        raise BridgeUnavailableError(f"rpy2 is not installed.\n\n{_INSTALL_HINT}") from e
    except Exception as e:
        raise BridgeUnavailableError(f"Could not start R: {e}\n\n{_INSTALL_HINT}") from e

    ro.r(
        r"""
        options(
          mc.cores = 1L,
          future.fork.enable = FALSE
        )
        """
    )
    _initialised = True
