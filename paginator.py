from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable, List, Tuple, Union


@dataclass(frozen=True)
class Block:
    content: Any
    height: float


@dataclass
class Page:
    blocks: List[Block] = field(default_factory=list)

    @property
    def height(self) -> float:
        return sum(block.height for block in self.blocks)

    @property
    def contents(self) -> List[Any]:
        return [block.content for block in self.blocks]

    def overflows(self, usable: float) -> bool:
        """``paginate`` only produces this for a lone oversized block."""
        return self.height > usable


BlockLike = Union[Block, Tuple[Any, float]]


def usable_height(page_height: float, top_margin: float = 0, bottom_margin: float = 0) -> float:
    return page_height - top_margin - bottom_margin


def _as_block(item: BlockLike) -> Block:
    if isinstance(item, Block):
        return item
    content, height = item
    return Block(content=content, height=height)


def paginate(blocks: Iterable[BlockLike], usable: float) -> List[Page]:
    """Greedily pack blocks, in order, onto pages no taller than ``usable``.

    A block is never split or reordered. When the next block does not fit on
    the current page, the page is closed and the block starts a new one; a
    block taller than ``usable`` therefore ends up alone on its own page and
    overflows it. Heights are the caller's estimates, nothing is measured.
    """
    pages: List[Page] = []
    current: List[Block] = []
    current_height = 0

    for item in blocks:
        block = _as_block(item)
        if current and current_height + block.height > usable:
            pages.append(Page(blocks=current))
            current = []
            current_height = 0
        current.append(block)
        current_height += block.height

    if current:
        pages.append(Page(blocks=current))
    return pages
