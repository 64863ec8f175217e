"""
Services layer - business logic for the report lifecycle.

DESIGN PRINCIPLE:
- Services contain business logic, NOT routes
- Services talk to the report store only through ReportStore
- Each service is a lazily created singleton (get_*_service) so routes
  can inject it with Depends and tests can override it
"""
