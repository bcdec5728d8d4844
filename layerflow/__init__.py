"""
layerflow: bronze/silver/gold pipeline orchestration.

Keeps the catalog of sources, datasets, mappings and pipelines in PostgreSQL
and drives pipeline runs through an external transform worker.
"""

__version__ = "0.1.0"
