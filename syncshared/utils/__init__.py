"""Small filesystem helpers shared by discovery and the watcher."""
