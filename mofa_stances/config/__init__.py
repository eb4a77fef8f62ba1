"""Runtime configuration and secrets for the pipeline entry points."""
