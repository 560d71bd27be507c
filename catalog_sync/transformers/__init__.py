"""
Raw provider bundle -> CatalogBundle transformation.

Modules:
    bundle_transformer: Per-provider transformers and get_transformer()
    countries: ISO-3166 validation and alpha-3 -> alpha-2 mapping
    data_amount: Human-readable data allowance formatting
    unlimited: Unlimited-plan detection strategies
    regions: Static ISO2 -> region table and primary region selection
"""

from catalog_sync.transformers.bundle_transformer import (
    BundleTransformer,
    EsimGoBundleTransformer,
    MayaBundleTransformer,
    AiraloBundleTransformer,
    TransformContext,
    get_transformer,
)

__all__ = [
    "BundleTransformer",
    "EsimGoBundleTransformer",
    "MayaBundleTransformer",
    "AiraloBundleTransformer",
    "TransformContext",
    "get_transformer",
]
