"""HTTP service for the merged calendar feed."""
