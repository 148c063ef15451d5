from stockledger.models.product import Category, Product
from stockledger.models.daily_stock import DailyStockRecord
from stockledger.models.inward import StockInward
from stockledger.models.sales import Sale, SaleItem
from stockledger.models.reconciliation import ReconciliationItem, StockReconciliation
from stockledger.models.audit_log import AuditLog
