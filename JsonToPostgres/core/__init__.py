from .normalizer import JsonNormalizer
from .analyzer import JsonStructureAnalyzer
from .table_builder import RowIdCounter, TableBuilder

__all__ = [
    'JsonNormalizer',
    'JsonStructureAnalyzer',
    'RowIdCounter',
    'TableBuilder'
]
