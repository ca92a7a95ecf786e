"""Memory model: identities, entities, document format and operations.

    paths.py       Slug / CategoryPath / MemoryPath value types
    models.py      Memory, MemoryUpdate (KEEP / CLEAR / SetTo), index entries
    document.py    frontmatter document format + token estimate
    operations.py  create / get / update / remove / move / list / recent / prune
"""
