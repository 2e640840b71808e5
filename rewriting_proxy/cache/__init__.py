from .asset_cache import AssetCacheBase, InMemoryAssetCache, NoopAssetCache, asset_cache

__all__ = ["AssetCacheBase", "InMemoryAssetCache", "NoopAssetCache", "asset_cache"]
