"""DrugWatch - drug-shop inspection and impoundment backend."""

__version__ = "1.0.0"
