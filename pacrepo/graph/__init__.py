"""Dependency graphs and build orders of registry packages."""

from .graph import DependencyGraph, Node
from .resolver import Resolution, ResolutionCancelled, ResolveOptions, Resolver

__all__ = [
    "DependencyGraph",
    "Node",
    "Resolution",
    "ResolutionCancelled",
    "ResolveOptions",
    "Resolver",
]
