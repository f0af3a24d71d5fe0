"""HTTP layer: dependencies, authentication and routers."""
