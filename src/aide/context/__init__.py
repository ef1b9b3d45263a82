"""Workspace access, indexing, search, and mention resolution."""
