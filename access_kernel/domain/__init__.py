"""Pure domain layer: value objects, state machines, validation, collaborators.

ZERO I/O.  Nothing here imports from ``db/``, ``models/``, ``services/`` or
``selectors/``.
"""
