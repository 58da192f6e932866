"""Hidden layer scanner: camera still -> invented entity -> generated images."""

__version__ = "0.1.0"

__all__ = ["__version__"]
