from .fleet import Site, Supplier, MachineType, Machine, Extension, FinancialSnapshot
from .events import AllocationEvent

__all__ = [
    'Site', 'Supplier', 'MachineType', 'Machine', 'Extension', 'FinancialSnapshot',
    'AllocationEvent',
]
