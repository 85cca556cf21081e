"""Client-side relay orchestration for cross-chain greetings via the Executor service."""

from importlib import metadata


def __getattr__(name: str) -> str:
    """Expose the package version via ``executor_relay.__version__``."""
    if name == "__version__":
        try:
            return metadata.version("executor-relay")
        except metadata.PackageNotFoundError:
            return "0.0.0"
    raise AttributeError(name)


__all__ = ["__version__"]
