"""fuxi: drive an AI coding agent through repeated, checkpointed iterations."""

__version__ = "0.3.0"
