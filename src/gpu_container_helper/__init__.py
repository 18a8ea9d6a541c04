"""
gpu-container-helper: expose GPU devices and driver capabilities to containers.

This package decides which GPU devices and driver components must be made
available to an already-created, not-yet-started container, enforces driver
requirements, and drives an external injection library to perform the mounts.
"""

__version__ = "1.0.0"
# Filled in by release builds.
__build_date__ = None
__build_revision__ = None
__author__ = "Cluster-Helper Team"
__email__ = "cluster-helper@example.com"
