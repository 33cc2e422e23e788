"""RoleKeeper: hierarchical role permission resolution."""

__version__ = "0.1.0"
