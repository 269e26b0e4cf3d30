"""
Operational requirements (ON / OR) as versioned items.
"""
