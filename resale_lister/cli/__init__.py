"""Command line entrypoints for ``python -m resale_lister``."""
