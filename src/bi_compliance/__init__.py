"""BI test compliance engine for sterile processing facilities."""

__version__ = "0.1.0"
