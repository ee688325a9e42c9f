"""
R package queries and installation. Stateless - no caching.
"""

import multiprocessing
import os
import platform
from typing import List, cast

from ..commands import r_literal
from ..helpers.log import log
from ._rsetup import initialise_r


def get_package_version(name: str) -> str | None:
    """Get installed package version or None."""
    initialise_r()
    import rpy2.robjects as ro
    from rpy2.rinterface_lib.embedded import RRuntimeError

    try:
        v_str = cast(List, ro.r(f"as.character(utils::packageVersion({r_literal(name)}))"))[0]
        return str(v_str)
    except RRuntimeError:
        return None


def is_package_installed(name: str) -> bool:
    """Check if package is installed."""
    initialise_r()
    from rpy2.robjects.packages import isinstalled

    return bool(isinstalled(name))


def _get_linux_repo() -> str:
    """Get Posit Package Manager URL for Linux binaries."""
    try:
        with open("/etc/os-release") as f:
            lines = f.readlines()

        codename = "jammy"  # Ubuntu 22.04
        for line in lines:
            if line.startswith("VERSION_CODENAME="):
                codename = line.strip().split("=")[1].strip('"')
                break

        return f"https://packagemanager.posit.co/cran/__linux__/{codename}/latest"
    except FileNotFoundError:
        return "https://packagemanager.posit.co/cran/__linux__/jammy/latest"


def _repos(mirror: str | None) -> List[str]:
    mirror = mirror or os.environ.get("MERBRIDGE_CRAN_MIRROR") or "https://cloud.r-project.org"
    repos = [mirror]
    if platform.system() == "Linux":
        repos.insert(0, _get_linux_repo())
    return repos


def install_package(name: str, mirror: str | None = None) -> None:
    """
    Install a single R package (and its dependencies) unless present.

    Parameters
    ----------
    name : str
        CRAN package name.
    mirror : str, optional
        CRAN mirror URL. Defaults to ``MERBRIDGE_CRAN_MIRROR`` or
        ``https://cloud.r-project.org``. On Linux the Posit binary
        repository is tried first.
    """
    if is_package_installed(name):
        log(f"{name} is already installed")
        return

    from rpy2.robjects.packages import importr
    from rpy2.robjects.vectors import StrVector

    utils = importr("utils")
    log(f"Installing R package {name}...")
    utils.install_packages(
        StrVector((name,)),
        repos=StrVector(_repos(mirror)),
        dependencies=True,
        Ncpus=multiprocessing.cpu_count(),
    )
    log(f"{name} installed")


def install_lme4(mirror: str | None = None) -> None:
    """
    Install the R packages merbridge calls: lme4 (fitting, bootstrap).

    Examples
    --------
    ```python
    import merbridge
    merbridge.install_lme4()
    ```
    """
    install_package("lme4", mirror=mirror)
