"""Signals sent when the collector reports a finding.

Receivers get ``finding`` (NPlusOneFinding or SlowQueryFinding) and
``record`` (the QueryExecutionRecord that triggered it)::

    from django.dispatch import receiver
    from django_querylens.signals import n_plus_one_detected

    @receiver(n_plus_one_detected)
    def report_n_plus_one(sender, finding, record, **kwargs):
        sentry_sdk.capture_message(f"N+1 on {finding.model}")
"""

from django.dispatch import Signal

n_plus_one_detected = Signal()
slow_query_detected = Signal()
