"""Catalog API service."""
