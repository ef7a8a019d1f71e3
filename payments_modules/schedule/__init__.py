"""
Payment Schedule Module (``payments_modules.schedule``).

Responsibility
--------------
Payment schedules: dated batches of boletines sent together to finance.
``ScheduleService`` builds them (exclusivity, commitment-date ceiling) and
drives them through pending approval, approved, sent to finance or
cancelled, appending an immutable audit row on every transition.
"""
