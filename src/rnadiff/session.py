"""
Session metadata for reproducibility (R's ``sessionInfo()``).

Records the interpreter, platform and the installed versions of the
scientific stack, so a results directory states what produced it.
"""

from __future__ import annotations

from datetime import datetime
from importlib import metadata as importlib_metadata
from typing import Iterable, Optional
import platform
import sys

__all__ = ['session_info', 'format_session_info', 'DEFAULT_PACKAGES']

# Distribution names on the package index
DEFAULT_PACKAGES = (
    "rnadiff",
    "numpy",
    "pandas",
    "scipy",
    "statsmodels",
    "patsy",
    "scikit-learn",
    "pydeseq2",
    "anndata",
    "matplotlib",
    "seaborn",
    "adjustText",
    "PyYAML",
)


def _version(distribution: str) -> Optional[str]:
    try:
        return importlib_metadata.version(distribution)
    except importlib_metadata.PackageNotFoundError:
        return None


def session_info(packages: Optional[Iterable[str]] = None) -> dict:
    """
    Interpreter, platform, timestamp and package versions.

    Packages that are not installed are reported with version ``None``.
    """
    packages = DEFAULT_PACKAGES if packages is None else tuple(packages)
    return {
        "python": sys.version.split()[0],
        "implementation": platform.python_implementation(),
        "platform": platform.platform(),
        "machine": platform.machine(),
        "timestamp": datetime.now().isoformat(timespec="seconds"),
        "packages": {name: _version(name) for name in packages},
    }


def format_session_info(info: Optional[dict] = None) -> str:
    """Text rendering of ``session_info()``."""
    info = info or session_info()
    lines = [
        f"Python {info['python']} ({info['implementation']})",
        f"Platform: {info['platform']} [{info['machine']}]",
        f"Date: {info['timestamp']}",
        "",
        "Packages:",
    ]
    width = max((len(name) for name in info["packages"]), default=0)
    for name, version in info["packages"].items():
        lines.append(f"  {name:<{width}}  {version or 'not installed'}")
    return "\n".join(lines)
