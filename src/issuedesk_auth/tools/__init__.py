"""Local auth channel exposed to the UI host"""

from .channel import AuthChannel, build_channel

__all__ = ["AuthChannel", "build_channel"]
