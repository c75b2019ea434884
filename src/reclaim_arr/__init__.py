"""reclaim-arr: media library reconciliation against Radarr and qBittorrent."""

__version__ = "0.1.0"
