"""Persistence layer: schema, connection pool, query translation, store."""
