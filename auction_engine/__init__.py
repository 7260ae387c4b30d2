from .engine import AuctionEngine
from .models.operations.sweep import SweepResult
