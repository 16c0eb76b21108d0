"""Core infrastructure: configuration, logging, time, shared HTTP clients and errors."""
