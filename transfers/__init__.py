"""Transfers service package: peer transfers, own-account moves, tax and allowance."""
