"""Database utilities: the tenant database manager and its global instance."""
