from .catalog import Product, ProductRecipe
from .orders import Order, OrderLine, OrderLineAddon, DailySequence
from .materials import Material, StockChangeRecord, MaterialAlert
from .shifts import Shift, Settlement, InventoryCount

__all__ = [
    'Product', 'ProductRecipe',
    'Order', 'OrderLine', 'OrderLineAddon', 'DailySequence',
    'Material', 'StockChangeRecord', 'MaterialAlert',
    'Shift', 'Settlement', 'InventoryCount',
]
