"""Journal entries, extracted day data, and content fingerprints."""
