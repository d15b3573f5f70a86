"""Barcode-to-listing toolkit for book and magazine resellers."""


def main(*args, **kwargs):
    """Proxy to :func:`resale_lister.__main__.main` without importing it eagerly."""
    from .__main__ import main as _main

    return _main(*args, **kwargs)


__all__ = ["main"]
