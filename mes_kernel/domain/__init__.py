"""Pure functional core: statuses, state machines, numbering rules and DTOs (no I/O)."""
