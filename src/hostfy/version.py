from importlib import metadata

# Used when running from a source tree that was never installed
__version__ = "1.0.0"


def get_version() -> str:
    """Version of the installed ``hostfy`` distribution, else ``__version__``."""
    try:
        return metadata.version("hostfy")
    except metadata.PackageNotFoundError:
        return __version__
