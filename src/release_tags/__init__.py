try:
    from importlib.metadata import version as _dist_version

    __version__ = _dist_version("release-tags")
except Exception:
    __version__ = "0.0.0"
