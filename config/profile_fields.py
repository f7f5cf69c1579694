"""Semantic lead fields used to build the embedding profile text.

Order matters: the profile text lists the fields in exactly this order, so
changing it changes every embedding computed afterwards.
"""

PROFILE_FIELDS = [
    # Academic background
    {"field": "bachelor_school", "label": "Bachelor School"},
    {"field": "bachelor_program_name", "label": "Bachelor Program"},
    {"field": "bachelor_gpa", "label": "Bachelor GPA"},
    {"field": "master_school", "label": "Master School"},
    {"field": "master_program_name", "label": "Master Program"},
    {"field": "master_gpa", "label": "Master GPA"},
    # Application plan
    {"field": "intended_program_level", "label": "Intended Program Level"},
    {"field": "intended_programs", "label": "Intended Programs"},
    {"field": "intended_direction", "label": "Intended Direction"},
]

# Value the CRM writes for a field the lead left blank
UNSET_SENTINEL = "-"
