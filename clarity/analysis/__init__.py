"""Day analysis, cross-day generation and the stores that accumulate their results."""
