"""Settings, logging, error taxonomy and timestamp helpers."""
