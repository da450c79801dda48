"""HTTP API over the trade pipeline."""
