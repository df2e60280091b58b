"""
Catalog sync engine.

Sweeps the academy and labs catalog services and converges a local DuckDB
catalog of modules, units, machines, exams and vulnerabilities.
"""
__version__ = "0.1.0"
