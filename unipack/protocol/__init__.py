"""Component manifest protocol: kinds, validation, signing."""
