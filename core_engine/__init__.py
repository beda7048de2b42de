"""meshsdf — Core Engine Package.

BVH construction, nearest-hit ray queries, Fibonacci sphere sampling and
signed distance field generation over triangle meshes.
"""
