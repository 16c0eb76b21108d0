"""Calendar parsing, merging, filtering and serialization."""
