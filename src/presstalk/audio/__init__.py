"""Audio capture, metering and silence handling."""
