"""vbox-machine-driver package."""

__all__ = [
    "boot2docker",
    "cli",
    "collaborators",
    "config",
    "constants",
    "disk",
    "driver",
    "exceptions",
    "models",
    "network",
    "parsers",
    "portforward",
    "runtime",
    "ssh",
    "utils",
    "vbm",
]
