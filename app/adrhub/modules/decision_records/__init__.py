"""
Decision records (ADRs).

- Records move through a fixed status graph (draft -> proposed -> in_review ->
  accepted -> deprecated/superseded)
- Every content edit or status change appends an immutable version snapshot
- Status changes bump MAJOR, content edits bump MINOR
- Mutations are recorded to the audit trail; status changes notify members
"""
