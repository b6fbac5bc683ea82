"""Command-line interface for the billing back-office."""
