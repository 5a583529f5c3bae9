"""Bundle build pipeline: platforms, descriptors, environment, orchestrator and batches."""
