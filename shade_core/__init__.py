"""SunShade — Core Package.

Ray/triangle intersection, welded meshes, shade layers, insolation, and
configuration loading for point-wise sun exposure analysis.
"""
