"""Loans service package: credit tiers, amortization and repayments."""
