"""Package version.

``__version__`` is static for build tools. Builds that set GIT_COMMIT get
the commit appended as a PEP 440 local label by ``get_version()``.
"""

import os

__version__ = "0.3.0"


def get_version() -> str:
    commit = os.environ.get("GIT_COMMIT", "").strip()
    if commit and commit != "dev":
        return f"{__version__}+{commit[:8]}"
    return __version__
