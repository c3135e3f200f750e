"""
Features package — each sub-package encapsulates a self-contained feature.

Convention:
  features/<feature_name>/
    __init__.py      — public API re-exports
    models.py        — data models specific to this feature
    store.py         — in-process state for the feature (if applicable)
    db.py            — database layer (if applicable)
    manager.py       — runtime resource management (if applicable)
"""
