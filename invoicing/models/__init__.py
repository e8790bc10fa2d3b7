from invoicing.models.user import User
from invoicing.models.customer import Customer
from invoicing.models.product import Product
from invoicing.models.invoice import Invoice, InvoiceLine
from invoicing.models.stock_movement import StockMovement
from invoicing.models.sequence_counter import SequenceCounter
