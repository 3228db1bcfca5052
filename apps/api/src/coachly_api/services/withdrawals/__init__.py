from .pipeline import WithdrawalPipeline

__all__ = ["WithdrawalPipeline"]
