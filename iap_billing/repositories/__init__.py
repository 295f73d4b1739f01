"""Catalog storage."""

from iap_billing.repositories.product_catalog import ProductCatalog

__all__ = ["ProductCatalog"]
