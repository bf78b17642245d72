"""Key-space storage backing the durable task queue."""
