"""Language server sessions, their registry and diagnostics correlation."""
