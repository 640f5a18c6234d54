"""Manage local binary package repositories.

Reconciles the package files in a repository directory against the
repository database and a remote package registry, and resolves
registry dependency graphs into build orders.
"""

__version__ = "0.1.0"
