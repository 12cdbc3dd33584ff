"""
KodeGraph - Code Knowledge Graph for Java repositories

Index repositories into a graph of types, methods and fields, then search it
by name, by meaning and by relationship.
"""

__version__ = "0.1.0"
__author__ = "KodeGraph Team"

__all__ = ["__version__"]
