from decimal import Decimal
from unittest import TestCase

from paginator import Block, paginate, usable_height


def heights_of(pages):
    return [[block.height for block in page.blocks] for page in pages]


class PaginateTest(TestCase):
    def test_greedy_split(self):
        blocks = [Block(f"b{i}", h) for i, h in enumerate([40, 120, 400, 300])]
        pages = paginate(blocks, 500)
        self.assertEqual(heights_of(pages), [[40, 120], [400], [300]])

    def test_oversized_block_gets_its_own_page(self):
        pages = paginate([Block("huge", 900)], 500)
        self.assertEqual(len(pages), 1)
        self.assertEqual(pages[0].contents, ["huge"])
        self.assertTrue(pages[0].overflows(500))

    def test_oversized_block_between_others(self):
        pages = paginate([("a", 100), ("huge", 900), ("b", 100)], 500)
        self.assertEqual(heights_of(pages), [[100], [900], [100]])

    def test_exact_fit_stays_on_one_page(self):
        pages = paginate([("a", 250), ("b", 250)], 500)
        self.assertEqual(len(pages), 1)
        self.assertEqual(pages[0].height, 500)

    def test_empty_input_gives_no_pages(self):
        self.assertEqual(paginate([], 500), [])

    def test_order_and_capacity(self):
        heights = [35, 210, 90, 90, 600, 15, 480, 20, 20, 333, 1]
        blocks = [Block(index, h) for index, h in enumerate(heights)]
        pages = paginate(blocks, 500)

        flattened = [content for page in pages for content in page.contents]
        self.assertEqual(flattened, list(range(len(heights))))
        for page in pages:
            if len(page.blocks) > 1:
                self.assertLessEqual(page.height, 500)

    def test_deterministic(self):
        blocks = [("a", 300), ("b", 300), ("c", 100), ("d", 450)]
        self.assertEqual(heights_of(paginate(blocks, 500)), heights_of(paginate(blocks, 500)))

    def test_decimal_heights(self):
        blocks = [Block(name, Decimal(h)) for name, h in (("a", "120.5"), ("b", "379.5"), ("c", "0.25"))]
        pages = paginate(blocks, Decimal("500"))
        self.assertEqual([page.contents for page in pages], [["a", "b"], ["c"]])
        self.assertEqual(pages[0].height, Decimal("500.0"))

    def test_usable_height(self):
        self.assertEqual(usable_height(842, 90, 70), 682)
        self.assertEqual(usable_height(730, 0, 20), 710)
