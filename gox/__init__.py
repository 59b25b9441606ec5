"""
gox - A local control plane for the Xray proxy engine.

Generates engine configuration from stored server descriptors, supervises
the engine process, and exposes its status over a small REST API.
"""

__version__ = "0.1.0"
