from .influencers import InfluencerService
from .ledger import CommissionLedger, InfluencerEarningsSummary

__all__ = ["CommissionLedger", "InfluencerEarningsSummary", "InfluencerService"]
