"""Margin rule engine, marginability classification and the margin batch job."""
