from .base import Notifier, NullNotifier
from .email import AuctionMailer
from .events import AuctionEvent, EventType, ProductSummary, WinnerSummary
from .fanout import FanoutNotifier
from .hub import GLOBAL_CHANNEL, BroadcastHub, Subscription, auction_channel
