"""
Utility functions module.

Time Semantics:
- Observation timestamps reported by the vision collaborator are authoritative
  for ordering, duplicate detection and pattern windows
- Wall-clock time drives session TTLs, revalidation windows and verification
  timestamps
- All datetimes are timezone-aware UTC
"""
