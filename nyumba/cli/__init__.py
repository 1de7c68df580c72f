"""
Nyumba CLI Package

Usage:
    nyumba info
    nyumba cache stats
    nyumba cache set KEY VALUE --ttl-ms 60000
    nyumba search suggest mod --listings listings.json
"""

from nyumba.cli.main import app, main

__all__ = ["app", "main"]
