"""
Adapters package for the Bulletin service.

Holds the store accessor used to reach the row store. Adapters translate
storage failures into shared error types and stay free of cache logic.
"""
