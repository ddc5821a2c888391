"""SQLite storage: one shared connection plus the schema it serves."""
