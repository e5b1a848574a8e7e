"""entity-scorer: weighted multi-factor entity scoring and ranking engine."""

__version__ = "0.1.0"
