from schemeresolver.resolver import SchemeResolver

__version__ = "0.1.0"

__all__ = ["SchemeResolver", "__version__"]
