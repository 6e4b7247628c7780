"""
Service layer: store adapters and audit collaborators.

Interfaces live in docrepo.services.interfaces; this package holds the
implementations shipped with docrepo.
"""
