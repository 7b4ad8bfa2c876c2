"""Local mirror of the crates.io registry."""

__version__ = "0.1.0"
