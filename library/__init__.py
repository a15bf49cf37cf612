"""
library — normalized library snapshots.

  • normalizer   raw provider entries → NormalizedAlbum / NormalizedPlaylist
  • cache        latest snapshot per (user, provider), staleness-aware
  • store        persisted snapshot copy (survives restarts)
  • sync_engine  fetch → normalize → atomic snapshot commit, with retries
  • query        search / sort helpers for the library view
"""
