"""CPA Operations Hub domain package."""
