"""CalcGrid: arithmetic expression evaluation over a pool of pull-based workers.

Components:
  - calculator: infix → RPN compiler and stack evaluator.
  - cluster: task registry, job scheduler, coordinator and worker loop.
  - api: Starlette application serving the client and worker protocols.
  - cli: HTTP client and terminal front-end.
"""

__version__ = "0.1.0"
