"""
RakshaSetu - Personal Safety SOS Core

Countdown-gated emergency alerts with live location sharing and SMS and
in-app chat fan-out to the user's close friends.
"""

__version__ = "1.0.0"
__author__ = "RakshaSetu Development Team"
