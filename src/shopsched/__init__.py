"""shopsched - machine scheduling for manufacturing process instances."""

__version__ = "0.1.0"
