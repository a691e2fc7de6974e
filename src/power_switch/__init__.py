"""Power Switch: automatic power-source selection for a remote solar installation."""

try:
    from importlib.metadata import version as _pkg_version
    __version__ = _pkg_version("power-switch")
except Exception:
    __version__ = "dev"
