# ============================================================================
# VERSION - ASSET TWIN
# ============================================================================
# EPOCH: 1 - ASSET HIERARCHY
# ============================================================================
"""
Version information for Asset Twin.

This is the single source of truth for the application version.
Updated manually for each release.
"""
# Version format: major.minor.patch.build
# Criteria for 0.1 - move/delete keep rollups consistent
__version__ = "0.1.0.0"
__version_info__ = tuple(int(x) for x in __version__.split("."))

# Build metadata
BUILD_DATE = "2026-10-13"

EPOCH = 1
CODENAME = "Asset Twin"
