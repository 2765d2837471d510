from src.engine.alerts import best_deals, evaluate, in_band, should_suppress

__all__ = [
    "best_deals",
    "evaluate",
    "in_band",
    "should_suppress",
]
