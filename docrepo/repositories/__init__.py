"""
Repository layer for document access.

Provides a generic, typed repository over a partitioned document container,
isolating store access from application code.
"""
