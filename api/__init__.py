"""FastAPI application for the CPA Operations Hub."""
