"""Asynchronous document-generation job pipeline for tailored job applications."""

__version__ = "0.1.0"
