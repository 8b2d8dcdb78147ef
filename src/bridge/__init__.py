"""Bridging of telephony media streams to realtime speech sessions."""
