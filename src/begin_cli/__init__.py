"""begin-cli - a command-line agent wallet for Cardano."""

__version__ = "0.3.0"
