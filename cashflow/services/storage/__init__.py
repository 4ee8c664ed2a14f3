"""
Object Storage Package

Provides the abstract object store contract and its S3 implementation.
"""

from cashflow.services.storage.interface import ObjectStoreInterface
from cashflow.services.storage.s3 import S3ObjectStore, create_s3_client

__all__ = [
    "ObjectStoreInterface",
    "S3ObjectStore",
    "create_s3_client",
]
