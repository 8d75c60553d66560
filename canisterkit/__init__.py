"""Candid binding generation and a cooperative task executor."""

__version__ = "0.1.0"

__all__ = ["bindgen", "candid", "codegen", "doc", "executor"]