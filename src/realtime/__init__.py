"""Client side of the realtime speech session."""
