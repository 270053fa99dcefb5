"""Station reachability monitoring (route discovery) for the Louaj central server."""
