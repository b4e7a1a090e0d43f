"""HTTP interface: dependencies, middleware and routers."""
