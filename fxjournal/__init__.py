"""Personal FX trading journal: sizing, admission control, lifecycle and analytics."""

__version__ = "1.0.0"
