"""
Model registry: versioned persistence, caching and lifecycle of trained models.

Modules:
  cache           — ``ExternalCache`` protocol, ``MemoryTTLCache``, ``RedisCache``,
                    and the in-process ``ModelCache``.
  model_registry  — ``ModelRegistry``: save / load / rollback / prune / evaluate.
"""
