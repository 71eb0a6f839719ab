"""Boundaries to cargo and the package registry.

This module handles:
- Running `cargo install` into a staging root
- Identifying the active toolchain
- Resolving version requirements against the registry index
- Reading install metadata from Cargo.toml
"""
