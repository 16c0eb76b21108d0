"""Merge-cycle orchestration and artifact rendering."""
