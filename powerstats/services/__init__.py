"""Rollup, storage, query and series services."""
