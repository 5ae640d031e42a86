"""SunShade — Simulation Package.

Shade model orchestration and the content-addressed result cache.
"""
