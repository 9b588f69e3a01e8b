from .openfda import FDALabel, OpenFDAClient

__all__ = ["FDALabel", "OpenFDAClient"]
