"""ybuild - dependency-ordered build orchestration.

This package resolves build targets from a package manifest, provisions a
host or container execution environment ("biome") per target, installs the
toolchains each target asks for and runs its build commands.
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
