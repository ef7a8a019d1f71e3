"""
payments_services -- application boundary of the payments engine.

Modules:
    authority      capability check evaluated once per operation
    bootstrap      logging, engine and schema from the active configuration
    payment_desk   facade that authorizes, runs, logs and notifies
"""
