"""
Order synchronization engine.

Subpackages:
    extractors: Paginated, retrying upstream reader
    transformers: Upstream record -> typed destination row
    quality: Duplicate reconciliation, validation and quality reporting
    loaders: Destination writer, sync state store and run log

Modules:
    runner: Single synchronization run (the orchestrator)
    scheduler: Periodic re-arming of runs
"""
