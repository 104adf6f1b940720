from .tradeable_asset import TradeableAsset
