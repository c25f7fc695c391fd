"""Request-level helpers shared by the API routers."""
