"""tasklane CLI commands."""
