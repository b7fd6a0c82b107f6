"""Execution pipeline for untrusted Playwright snippets.

Snippets run inside an AST-checked sandbox against a shared, long-lived
browser per engine family. Files a snippet writes into its run directory are
published under an unguessable name for a short retention window, and its
console output is returned as an ordered log.
"""
