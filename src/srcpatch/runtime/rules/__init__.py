"""Interceptor rules; each module exposes ``register(interceptor, settings)``."""
