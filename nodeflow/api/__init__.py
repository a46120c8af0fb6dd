"""REST API for the workflow engine."""
