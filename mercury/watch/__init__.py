"""Node status watcher entry point (``python -m mercury.watch``)."""
