"""Application wiring: bootstrap and AppState."""
