"""aetherenv - dependency closure and offline staging for pacman packages."""

__version__ = "0.1.0"
