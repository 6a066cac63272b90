"""Prerequisite bootstrapper (manifest-driven, trust-gated).

Core design goals:
- Every component is verified before it is installed
- Sources are searched in a fixed, local-first order
- Components already present are never touched again
- Cancellation is cooperative and leaves no partial work behind
- Centralized logging and a persisted run record
"""

__all__ = []
