"""Durable job queue, worker, and document-generation handlers."""
