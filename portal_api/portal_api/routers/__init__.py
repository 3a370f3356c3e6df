"""HTTP routers for the portal API."""
