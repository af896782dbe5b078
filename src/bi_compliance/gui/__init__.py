"""PyQt6 front-end for the BI compliance engine."""
