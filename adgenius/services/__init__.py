"""Licensing services: credit ledger, purchase processing, license keys and stats."""
