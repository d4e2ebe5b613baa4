"""Trade settlement, portfolio accounting and margin risk core."""
