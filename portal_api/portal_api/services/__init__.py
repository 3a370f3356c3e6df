"""Service layer: Stripe access, webhook dispatch and access operations."""
