"""Telephony audio primitives: G.711 mu-law codec, resampling and frames.

Everything in this package is pure and stateless; per-call state lives in
the ``bridge`` package.
"""
