"""Prometheus metrics shared by the classroom economy services."""
