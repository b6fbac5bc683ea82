"""HTTP surface of the billing back-office."""
