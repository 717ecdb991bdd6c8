"""Service layer: generation backends and run orchestration."""
