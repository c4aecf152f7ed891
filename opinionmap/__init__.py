"""Classroom progress gating and anonymized opinion-map aggregation."""
__version__ = "0.1.0"
