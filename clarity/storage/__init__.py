"""Local snapshot store, remote per-user tables and the best-effort writer."""
