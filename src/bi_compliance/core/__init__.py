"""Core domain: models, quarantine engine, workflow, repositories and services."""
