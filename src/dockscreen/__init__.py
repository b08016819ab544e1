"""GPU virtual-screening pipeline around Open Babel and Uni-Dock."""

__version__ = "0.3.0"
