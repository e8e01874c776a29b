"""HTTP API over the journal session."""
