"""Core module - models, configuration, errors, audit and observability.

Shared by the classification engine, journal builder, storage layer and
bridge. Nothing in core depends on those packages.
"""

__version__ = "1.0.0"
