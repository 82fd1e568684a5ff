"""
Catalog API Layer.

This package handles all communication with the Spotify Web API.
"""

from .catalog import CatalogClient, CatalogResult, CatalogTrack, SpotifyCatalog

__all__ = ["CatalogClient", "CatalogResult", "CatalogTrack", "SpotifyCatalog"]
