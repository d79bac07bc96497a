"""VaroLogs FastAPI application package."""
