"""Build orchestration module.

This module handles:
- Span collection and rendering (trace)
- The install and execute phases of a target (phases)
- Sequencing targets with guaranteed teardown (driver)
"""

# Submodules are imported directly (ybuild.build.driver, etc.) to avoid
# circular imports with ybuild.system and ybuild.buildpacks.
