"""Deploy and rollback controllers."""
