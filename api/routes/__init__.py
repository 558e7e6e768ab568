"""api/routes/ -- Versioned route modules."""
