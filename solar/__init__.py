"""SunShade — Solar Package.

Sun position ephemerides and rays toward the sun.
"""
