"""
PharmaGuard: deterministic pharmacogenomic drug-risk assessment.
VCF parsing, CPIC diplotype/phenotype tables and per-drug risk classification.
"""
__version__ = "1.0.0"
