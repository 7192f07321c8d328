"""Services around the workflow engine."""
