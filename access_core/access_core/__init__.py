"""Tenant access domain: records, status mapping, entitlement and state."""
