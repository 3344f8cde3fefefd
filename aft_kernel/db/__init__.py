"""Database engine, declarative base, and ORM-level integrity listeners."""
