"""Clients for Radarr, qBittorrent, TMDB and the watcher agent."""
