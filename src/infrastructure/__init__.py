"""
infrastructure - Concrete implementations of domain ports.

Contains all vendor-specific code: settings loading (python-dotenv) and the
SQLite document store with its repositories (aiosqlite).
Depends on domain/ only (implements ports). Never imported by application/.
"""
