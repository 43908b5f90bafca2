"""relspine - Risk-aware upgrade and rollback orchestration for Helm releases.

Subpackages:
- relspine.core: Structured errors and logging
- relspine.transition: Version classification, override composition,
  transition state machine and health monitoring
- relspine.cli: ``relspine`` command line
"""

__version__ = "0.1.0"
