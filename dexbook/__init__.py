"""Bulbapedia Pokédex -> Apple Dictionary bundle generator."""

__version__ = "0.1.0"
