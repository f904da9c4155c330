"""copytune: UI copy optimisation for design documents."""

__version__ = "1.0.0"
