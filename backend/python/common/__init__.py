"""
Shared building blocks for the billing back-office.

- money / related: value types persisted by the models
- models: SQLAlchemy entities
- config_loader / config: YAML configuration
- engine / session: database access and transaction scopes
- operations: generic repository
- date_utils: calendar-month arithmetic

Example:
    from common.engine import get_engine
    from common.session import SessionManager
    from billing.bills import BillRepository

    session_manager = SessionManager(get_engine("backend"))
    with session_manager.session_scope() as session:
        bills = BillRepository(session).outstanding_for_booking(booking_id, today)
"""

__version__ = '1.0.0'
