"""
soundlink-cli: turn catalog and media links into organised audio playlists.
"""

__version__ = "1.4.0"
