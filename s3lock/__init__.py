"""
S3 object-lock conformance harness

A retention-policy oracle plus a black-box driver that checks WORM behavior
(GOVERNANCE / COMPLIANCE retention, legal holds, delete markers, governance
bypass) of any S3-compatible endpoint.
"""

__version__ = "0.1.0"
