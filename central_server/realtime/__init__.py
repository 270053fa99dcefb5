"""Real-time station session handling for the Louaj central server."""
