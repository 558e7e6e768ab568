"""api/routes/v1/ -- /api/v1 endpoints."""
