"""meshsdf — Generation Package.

Pipeline orchestration and persistence of signed distance grids.
"""
