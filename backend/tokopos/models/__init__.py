from .catalog import Unit, Category, Product, ProductVariant
from .customers import Customer, CustomerBalanceMutation
from .inventory import StockMutation, SupplierReturn
from .purchases import Supplier, PurchaseOrder, PurchaseItem
from .sales import Sale, SaleItem
from .debts import Debt, DebtPayment
from .returns import CustomerReturn, CustomerReturnItem, CustomerExchangeItem
from .documents import DocumentSequence

__all__ = [
    'Unit', 'Category', 'Product', 'ProductVariant',
    'Customer', 'CustomerBalanceMutation',
    'StockMutation', 'SupplierReturn',
    'Supplier', 'PurchaseOrder', 'PurchaseItem',
    'Sale', 'SaleItem',
    'Debt', 'DebtPayment',
    'CustomerReturn', 'CustomerReturnItem', 'CustomerExchangeItem',
    'DocumentSequence',
]
