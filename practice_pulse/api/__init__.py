"""HTTP API: app factory and resource routers."""
