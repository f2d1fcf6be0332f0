"""Construction ERP service."""
