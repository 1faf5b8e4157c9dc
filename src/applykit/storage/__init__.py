"""Durable storage for the job pipeline."""
