"""Louaj central server: station sessions, instant sync and route discovery."""
