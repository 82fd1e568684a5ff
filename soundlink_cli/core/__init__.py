"""
Core application engine for orchestrating the download process.

This package contains the primary logic. The `DownloadManager` acts
as the batch coordinator, delegating link resolution to the `LinkResolver`
and the download of each resolved item to the `TrackDownloader`. The
`Library` applies reversible edits to downloaded playlists.
"""
