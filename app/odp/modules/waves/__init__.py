"""
Waves: the year.quarter timeline used to order milestones and to filter
item collections chronologically (fromWave).
"""
