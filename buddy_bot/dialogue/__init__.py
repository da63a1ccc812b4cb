from .assembler import ContextAssembler, PromptRequest

__all__ = ["ContextAssembler", "PromptRequest"]
