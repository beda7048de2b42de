"""meshsdf — Data Ingestion Package.

OBJ / STL mesh loading and procedural closed test meshes.
"""
