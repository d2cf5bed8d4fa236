"""
Internal library package for docgen-service.

This package holds the execution and safety-control building blocks
(guardrails, document normalization, job/attachment registries, the dispatcher).
The HTTP handler stays under `api/`.
"""
