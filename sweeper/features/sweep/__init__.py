"""
Mailbox sweep feature: job state machine, Gmail scan pipeline and results.
"""
