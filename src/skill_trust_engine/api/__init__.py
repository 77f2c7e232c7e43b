"""HTTP API: FastAPI router and pydantic schemas."""
