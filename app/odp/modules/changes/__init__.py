"""
Operational changes as versioned items, with embedded stable-keyed milestones.
"""
