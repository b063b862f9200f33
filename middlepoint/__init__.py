"""Meet in the Middle: multi-phase minimax meeting point search."""

__version__ = '0.2.0'
