"""Database layer: declarative base, engine/session management, append-only guards."""
