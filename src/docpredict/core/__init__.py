"""Core domain: models, comparison, summaries, events, errors, settings."""
