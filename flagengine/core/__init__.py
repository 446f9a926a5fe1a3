"""Core: configuration, logging and the flag engine."""
