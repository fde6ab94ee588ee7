"""Reconciliation bounded context — Payment Reconciliation and Delivery Scheduling.

Reconciles instant-payment and card-processor notifications (polled or pushed
by webhook) into a single consistent Order/Subscription state, consumes and
reserves stock, and decides which business day and time window each paid
delivery lands on. Uses CQRS because every transition is a short, guarded
state change driven by external providers.
"""

from protean.domain import Domain

reconciliation = Domain(name="reconciliation")
