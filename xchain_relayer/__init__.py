"""Cross-chain delivery relayer: pricing, manual delivery, redelivery and status tracking."""

from importlib import metadata


def __getattr__(name: str) -> str:
    """Expose the package version via ``xchain_relayer.__version__``."""
    if name == "__version__":
        try:
            return metadata.version("xchain-relayer")
        except metadata.PackageNotFoundError:
            return "0.0.0"
    raise AttributeError(name)


__all__ = ["__version__"]
