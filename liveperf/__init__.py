"""Live performance aggregation and alerting engine"""

__version__ = "1.0.0"
