from daswos.api.v1 import coins, recommendations

__all__ = ["coins", "recommendations"]
