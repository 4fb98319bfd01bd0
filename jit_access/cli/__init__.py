"""Command line interface for the JIT Access engine."""
