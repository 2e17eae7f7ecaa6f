"""Core models, profit arithmetic, errors and the execution engine."""
