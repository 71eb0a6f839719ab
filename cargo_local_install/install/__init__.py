"""Install orchestration module.

This module handles:
- Install request validation
- Fingerprint computation
- The build-or-reuse decision
- Materializing cached binaries into project directories
"""

from cargo_local_install.install.request import InstallRequest

__all__ = ["InstallRequest"]

# Submodules are imported lazily to avoid circular imports
# Access via cargo_local_install.install.engine, etc.
