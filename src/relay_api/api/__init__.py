"""HTTP surface: routers, request schemas and dependencies."""
