"""charger - Lightning login, deposit and withdraw bridge."""

__version__ = "0.1.0"
