"""
mirror-remote - local control surface for a running mirror display.
"""

__version__ = "0.1.0"
__logo__ = "🪞"
