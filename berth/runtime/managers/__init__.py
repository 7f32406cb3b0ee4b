"""Registry managers for the workspace runtime.

Each module wraps one persisted registry with load / save and the few
business rules that sit on top of plain CRUD (reconciliation, auto
registration, the global port survey).  Managers raise domain exceptions
from :mod:`berth.runtime.errors`, never click exceptions -- that translation
is the CLI's responsibility.
"""
