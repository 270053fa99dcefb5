"""
Shared SQLAlchemy metadata for the central server models.

Kept separate from database.py so models can import it without circular imports.
"""

from sqlalchemy import MetaData

metadata = MetaData()
