"""
Embedded R runtime: the bridge session and R package management.
"""

from ._r_packages import (
    get_package_version,
    install_lme4,
    install_package,
    is_package_installed,
)
from ._session import BridgeSession, get_session

__all__ = [
    "BridgeSession",
    "get_session",
    "get_package_version",
    "install_lme4",
    "install_package",
    "is_package_installed",
]
