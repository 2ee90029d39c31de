"""Read-only query selectors."""

from mes_kernel.selectors.base import BaseSelector
from mes_kernel.selectors.genealogy_selector import GenealogySelector

__all__ = ["BaseSelector", "GenealogySelector"]
