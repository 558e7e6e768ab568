"""api/ -- HTTP layer: FastAPI app, request/response models and routes."""
