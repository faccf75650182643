"""Core module - shared configuration, observability and audit.

Everything here is independent of the matching and trust domains; the
`line_matcher` and `trust_engine` packages build on it.
"""

__version__ = "1.0.0"
