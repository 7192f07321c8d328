"""Database layer: declarative models, sessions and tenant scoping."""
