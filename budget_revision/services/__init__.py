"""
Budget engine services.

Each module owns one concern and takes an explicit BudgetContext where the
acting user matters:
- workflow:  status state machine and edit rights
- ceiling:   Initial-stage ceiling guard
- lineage:   cross-stage pointers
- migration: carry Accepted records into the next stage
- summary:   per-unit aggregation (full rebuild + upsert)
- variance:  stage k vs stage k-1 comparison
- proposals: record CRUD orchestrating the above
- cycle:     fiscal year, windows, revision activation
- reporting: read-side views over summaries and records
- activity:  paginated audit trail for administrators
"""
