"""
Outline subsystem.

Components:
- models.py: data structures (Task, ChangeSet, update records)
- hierarchy.py: pure helpers over dotted hierarchy numbers
- renumber.py: indent/outdent/move/drag/insert/delete/normalize computations
- predecessors.py: predecessor parsing, remapping and validation
- rollup.py: parent schedule values derived from children
- cache.py: per-project in-memory view + pending-echo markers
- coordinator.py: optimistic apply, submit, rollback, undo
- importer.py: YAML outline import
"""
