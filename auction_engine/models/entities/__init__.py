from .base import BaseEntity, BaseEntityData, DataT, T
from .auctions import Auction, AuctionData, AuctionStatus, AuctionType
from .bids import Bid, BidData
from .orders import Order, OrderData
from .products import Product, ProductData
from .users import User, UserData
