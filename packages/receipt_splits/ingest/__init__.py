"""Reference-data loaders for ``receipt_splits``."""
