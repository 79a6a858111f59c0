"""Investments service package: assets, portfolios and market orders."""
