"""Domain events emitted by the checkout and reconciliation services.

Business logic reports what happened through these signals instead of
logging directly; :mod:`django_boutique.shop.receivers` turns them into log
records, and projects can connect their own receivers for alerting.

Signals:
    order_created: Sent when a PENDING order has been written.
        Sender: The ``Order`` class.
        Kwargs:
            order: The new ``Order``.
    payment_confirmed: Sent after the confirmation transaction committed.
        Sender: The ``Order`` class.
        Kwargs:
            order: The confirmed ``Order``.
            source: ``"zero_total"`` or ``"webhook"``.
    payment_failed: Sent when an order moves to FAILED/CANCELLED.
        Sender: The ``Order`` class.
        Kwargs:
            order: The failed ``Order``.
            reason: The processor-supplied failure reason.
    ticket_overbooked: Sent when tickets are issued beyond an event's capacity.
        Sender: The ``Event`` class.
        Kwargs:
            event: The overbooked ``Event``.
            order: The ``Order`` the tickets were issued for.
            requested: Number of seats requested.
            available: Seats that were left before issuing.
    reconciliation_anomaly: Sent when expected records were missing and had
        to be fabricated so that a paid purchase is not lost.
        Sender: The class of the record that was fabricated.
        Kwargs:
            kind: ``"missing_order"`` or ``"missing_event"``.
            reference: The identifier that could not be resolved.
            detail: Human-readable context for operators.
"""

from django.dispatch import Signal

order_created = Signal()
payment_confirmed = Signal()
payment_failed = Signal()
ticket_overbooked = Signal()
reconciliation_anomaly = Signal()
