"""boxbuild - scripted container image builder.

This package evaluates box build plans step by step against a container
engine, caching each layer, and exposes one-shot, multi-build and
interactive drivers.
"""

__version__ = "0.4.2"
__all__ = ["__version__"]
