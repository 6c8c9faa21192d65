"""IPO tracker package: fetch upcoming A-share offerings, publish and notify."""

__all__ = [
    "cli",
    "common",
    "config",
    "etl",
    "publish",
    "tools",
]

__version__ = "0.1.0"
