"""Gateway package: one ASGI app serving every classroom economy router."""
