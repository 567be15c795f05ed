"""Multi-signal fraud risk scoring for links and product listings."""

__version__ = "0.1.0"
