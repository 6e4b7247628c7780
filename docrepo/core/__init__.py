"""Core infrastructure: configuration, logging, errors and database glue."""
