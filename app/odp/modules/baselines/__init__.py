"""
Baselines: immutable whole-system snapshots of item -> version pointers.

- Created once, never updated or deleted
- Capture runs inside the creating transaction, so no item can advance mid-snapshot
"""
