"""cargo-local-install - per-project installs of cargo binaries.

This package wraps `cargo install` with a shared, fingerprinted build cache
so that every project can pin its own tool versions without rebuilding a
binary that some other project already built.
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
