"""isoforge - Build artifact orchestration for custom Linux images.

This package turns a declarative build request (distro, mode, hardware,
overlays) into a reproducible set of build artifacts and hands them off to an
external image-building runner.
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
