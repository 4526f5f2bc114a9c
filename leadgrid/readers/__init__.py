from .tabular import TabularData, TabularReadError, read_tabular_file

__all__ = [
    "TabularData",
    "TabularReadError",
    "read_tabular_file",
]
