"""HTTP routers, one per domain area."""
