"""srcpatch: catalog-driven source patching with a runtime import interceptor."""

__version__ = "0.1.0"
