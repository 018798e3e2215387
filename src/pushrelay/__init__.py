"""pushrelay — push notification dispatcher for event platform data streams.

Watches the events, payments, messages, tickets and attendance streams
for new records and pushes a notification to whoever the record concerns.
"""

__version__ = "0.1.0"
