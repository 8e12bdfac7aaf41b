"""core/ -- Shared models, config, crypto, file and formatting helpers."""
