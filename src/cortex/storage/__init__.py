"""Storage layer.

Ports live in ``base``; the filesystem backend lays a store out as:

    <store root>/
    ├── index.yaml                 # root index: top-level memories + categories
    ├── store.yaml                 # store-level configuration (optional)
    └── docs/
        ├── index.yaml             # memories in docs/, subcategories of docs/
        └── guides/
            ├── index.yaml
            └── setup.md           # one document per memory, named by slug

A category's description lives in its parent's ``index.yaml``.
"""
