"""Entry screens applied to candidate signals before any bar-level work."""
