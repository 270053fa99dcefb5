"""
Structured logging package for the Louaj central server.

All imports should use explicit paths like
'from central_server.structured_logging.enhanced_logging_config import get_logger'.

Named 'structured_logging' to avoid shadowing the standard library 'logging' module.
"""

__all__: list[str] = []
