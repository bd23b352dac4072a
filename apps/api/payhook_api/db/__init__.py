"""Database layer for the sql payment store backend."""
