"""Core domain logic for the back office."""
