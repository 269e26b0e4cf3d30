"""
Setup elements (stakeholder categories, data categories, services,
regulatory aspects, documents).

Only what versioned items need is provided here: existence checks for
relationship targets, plus create/get/list to populate them.
"""
