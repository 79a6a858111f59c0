"""Seats service package: money-supply pricing and seat trading."""
