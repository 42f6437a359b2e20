"""
Domain package for the Search Service.

Modules of interest:
- orchestrator: Hybrid local/remote search pipeline.
- catalog: Category and service reads and writes with cache invalidation.
- models: Records, queries and result pages.
- validation, ranking, redaction, history: Pure helpers used by both.
"""
