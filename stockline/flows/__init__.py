from stockline.flows.add import AddDraft, AddFlow
from stockline.flows.base import FlowHandler, FlowResult, parse_quantity
from stockline.flows.delete import DeleteDraft, DeleteFlow
from stockline.flows.edit import EditDraft, EditFlow
from stockline.flows.query import QueryFlow
from stockline.flows.stock import StockDraft, StockFlow

__all__ = [
    "AddDraft", "AddFlow", "DeleteDraft", "DeleteFlow", "EditDraft", "EditFlow",
    "FlowHandler", "FlowResult", "QueryFlow", "StockDraft", "StockFlow", "parse_quantity",
]
