"""
Projects and memberships.

A project is the unit of access control: every decision record belongs to
exactly one project, and a user's role on that project decides what they can
do with its records.
"""
