from __future__ import annotations

import io
import sys
import unittest
from pathlib import Path
from unittest import mock

import requests
from PIL import Image

TESTS_DIR = Path(__file__).resolve().parent
PROJECT_ROOT = TESTS_DIR.parent
sys.path.insert(0, str(PROJECT_ROOT / "src"))

from svgmerge.compose import Composer, compose, new_canvas, positioned_elements
from svgmerge.defs import DefinitionPool, definition_containers
from svgmerge.diagnostics import Diagnostics
from svgmerge.errors import FragmentParseError
from svgmerge.layout import ItemType, LayoutItem
from svgmerge.markup import MAX_DEPTH, Element, parse, serialize
from svgmerge.normalize import fmt, group_attributes, intrinsic_size, normalize, parse_length, placement_transform
from svgmerge.resolver import ContentResolver, MarkupContent

SVG = "http://www.w3.org/2000/svg"

GRADIENT_A = (
    f'<svg xmlns="{SVG}" width="10" height="10">'
    '<defs><linearGradient id="g1"><stop offset="0"/></linearGradient></defs>'
    '<rect width="10" height="10" fill="url(#g1)"/></svg>'
)
GRADIENT_B = (
    f'<svg xmlns="{SVG}" width="10" height="10">'
    '<defs><linearGradient id="g1"><stop offset="1"/></linearGradient></defs>'
    '<circle r="5" fill="url(#g1)"/></svg>'
)


def png_bytes() -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", (1, 1)).save(buffer, format="PNG")
    return buffer.getvalue()


def make_response(body: bytes, content_type: str) -> requests.Response:
    response = requests.Response()
    response.status_code = 200
    response._content = body
    response.headers["Content-Type"] = content_type
    response.encoding = requests.utils.get_encoding_from_headers(response.headers)
    return response


def svg_item(url: str, x: float = 0, y: float = 0, width: float = 10, height: float = 10, **kwargs) -> LayoutItem:
    return LayoutItem(url, ItemType.SVG, x, y, width, height, **kwargs)


def resolver_for(pages: dict) -> ContentResolver:
    """Resolver whose session serves ``pages`` (url -> (body, content type))."""
    session = mock.Mock(spec=requests.Session)

    def get(url, timeout=None):
        body, content_type = pages[url]
        return make_response(body.encode("utf-8") if isinstance(body, str) else body, content_type)

    session.get.side_effect = get
    return ContentResolver({}, session=session)


def fragment_root(markup: str) -> Element:
    return parse(markup).root


def nested_groups(depth: int) -> str:
    """An <svg> root with <g> elements nested below it, ``depth`` levels in all."""
    inner = depth - 1
    return f'<svg xmlns="{SVG}" width="10" height="10">' + "<g>" * inner + "</g>" * inner + "</svg>"


class NormalizeTests(unittest.TestCase):
    def test_intrinsic_size_prefers_width_and_height(self) -> None:
        item = svg_item("https://x/a.svg", width=5, height=5)
        root = fragment_root(f'<svg xmlns="{SVG}" width="100px" height="50" viewBox="0 0 1 1"/>')
        self.assertEqual(intrinsic_size(root, item), (100.0, 50.0))

    def test_intrinsic_size_falls_back_to_view_box(self) -> None:
        item = svg_item("https://x/a.svg", width=5, height=5)
        root = fragment_root(f'<svg xmlns="{SVG}" width="100%" viewBox="0,0,40,20"/>')
        self.assertEqual(intrinsic_size(root, item), (40.0, 20.0))

    def test_intrinsic_size_falls_back_to_item_size(self) -> None:
        item = svg_item("https://x/a.svg", width=7, height=3)
        root = fragment_root(f'<svg xmlns="{SVG}" width="0" height="0" viewBox="0 0 0 0"/>')
        self.assertEqual(intrinsic_size(root, item), (7, 3))

    def test_scale_is_requested_over_intrinsic(self) -> None:
        item = svg_item("https://x/a.svg", x=10, y=20, width=200, height=50)
        self.assertEqual(placement_transform(item, 100, 50), "translate(10, 20) scale(2, 1)")

    def test_no_scale_when_sizes_match(self) -> None:
        item = svg_item("https://x/a.svg", x=-5.5, y=0, width=100, height=50)
        self.assertEqual(placement_transform(item, 100, 50), "translate(-5.5, 0)")

    def test_group_attributes_are_an_allow_list(self) -> None:
        root = fragment_root(
            f'<svg xmlns="{SVG}" style="opacity:.5" class="c" width="1" height="1" onload="x()" version="1.1"/>'
        )
        self.assertEqual(group_attributes(root), {"style": "opacity:.5", "class": "c", "version": "1.1"})

    def test_unparseable_fragment(self) -> None:
        item = svg_item("https://x/a.svg")
        with self.assertRaisesRegex(FragmentParseError, "https://x/a.svg"):
            normalize("<svg><g></svg>", item)
        with self.assertRaisesRegex(FragmentParseError, "<html>"):
            normalize("<html/>", item)

    def test_number_helpers(self) -> None:
        self.assertEqual(fmt(2.0), "2")
        self.assertEqual(fmt(0.5), "0.5")
        self.assertEqual(fmt(1 / 3), "0.333333")
        self.assertEqual(fmt(-4e-7), "0")
        self.assertEqual(fmt(-0.5), "-0.5")
        self.assertEqual(parse_length("12.5pt", None), 12.5)
        self.assertEqual(parse_length("auto", 3.0), 3.0)


class DefinitionPoolTests(unittest.TestCase):
    def test_container_is_created_lazily_at_the_front(self) -> None:
        canvas = new_canvas()
        pool = DefinitionPool(canvas)
        self.assertEqual(pool.merge(fragment_root(f'<svg xmlns="{SVG}"><rect/></svg>')), 0)
        self.assertIsNone(pool.container)

        pool.merge(fragment_root(GRADIENT_A))
        self.assertIs(canvas.children[0], pool.container)
        self.assertIn("g1", pool)
        self.assertEqual(len(pool), 1)

    def test_first_definition_wins(self) -> None:
        pool = DefinitionPool(new_canvas())
        self.assertEqual(pool.merge(fragment_root(GRADIENT_A)), 1)
        self.assertEqual(pool.merge(fragment_root(GRADIENT_B)), 0)
        gradients = [child for child in pool.container.elements() if child.get("id") == "g1"]
        self.assertEqual(len(gradients), 1)
        self.assertEqual(gradients[0].elements()[0].get("offset"), "0")

    def test_unidentified_definitions_are_always_added(self) -> None:
        pool = DefinitionPool(new_canvas())
        markup = f'<svg xmlns="{SVG}"><defs><style>.a{{fill:red}}</style></defs></svg>'
        pool.merge(fragment_root(markup))
        pool.merge(fragment_root(markup))
        self.assertEqual(len(pool), 2)

    def test_defs_inside_defs_is_content(self) -> None:
        root = fragment_root(
            f'<svg xmlns="{SVG}"><defs><defs><rect id="inner"/></defs></defs>'
            '<g><defs><circle id="c"/></defs></g></svg>'
        )
        self.assertEqual(len(list(definition_containers(root))), 2)
        pool = DefinitionPool(new_canvas())
        pool.merge(root)
        self.assertEqual([child.name for child in pool.container.elements()], ["defs", "circle"])
        self.assertNotIn("inner", pool)
        self.assertIn("c", pool)


class ComposeTests(unittest.TestCase):
    def test_canvas_shape(self) -> None:
        document = compose([], resolver_for({}))
        self.assertEqual(
            serialize(document),
            f'<svg xmlns="{SVG}" xmlns:xlink="http://www.w3.org/1999/xlink" width="1200" height="600"'
            ' viewBox="-150 0 1200 600"><rect x="-150" y="0" width="1200" height="600" fill="none"/></svg>',
        )

    def test_places_items_in_order_and_skips_failures(self) -> None:
        pages = {
            "https://x/a.svg": (GRADIENT_A, "image/svg+xml"),
            "https://x/p.png": (png_bytes(), "image/png"),
            "https://x/b.svg": (GRADIENT_B, "image/svg+xml"),
            "https://x/bad.svg": ("<svg><g></svg>", "image/svg+xml"),
        }
        items = [
            svg_item("https://x/a.svg"),
            svg_item("ftp://x/skip.svg"),
            LayoutItem("https://x/p.png", ItemType.PNG, 1, 2, 3, 4),
            svg_item("https://x/b.svg", id="second"),
            svg_item("https://x/bad.svg"),
        ]
        diagnostics = Diagnostics()
        composer = Composer(resolver_for(pages), diagnostics)
        document = composer.compose(items)

        placed = positioned_elements(document)
        self.assertEqual([element.get("id") for element in placed], ["item-0", "item-2", "second"])
        self.assertEqual([element.name for element in placed], ["g", "image", "g"])
        self.assertEqual(composer.placed, 3)

        image = placed[1]
        self.assertEqual(
            {key: image.get(key) for key in ("x", "y", "width", "height")},
            {"x": "1", "y": "2", "width": "3", "height": "4"},
        )
        self.assertTrue(image.get("href").startswith("data:image/png;base64,"))

        warned = [(entry.item_index, entry.url) for entry in diagnostics.entries]
        self.assertEqual(warned, [(1, "ftp://x/skip.svg"), (4, "https://x/bad.svg")])
        self.assertIn("Unsupported URL format", diagnostics.entries[0].message)

    def test_shared_definition_id_appears_once(self) -> None:
        pages = {
            "https://x/a.svg": (GRADIENT_A, "image/svg+xml"),
            "https://x/b.svg": (GRADIENT_B, "image/svg+xml"),
        }
        document = compose([svg_item("https://x/a.svg"), svg_item("https://x/b.svg")], resolver_for(pages))
        gradients = [element for element in document.root.iter() if element.get("id") == "g1"]
        self.assertEqual(len(gradients), 1)
        self.assertEqual(gradients[0].elements()[0].get("offset"), "0")
        self.assertEqual(document.root.children[0].name, "defs")
        # Groups keep only drawable content.
        for group in positioned_elements(document):
            self.assertNotIn("defs", [child.name for child in group.elements()])

    def test_group_transform_and_attributes(self) -> None:
        markup = f'<svg xmlns="{SVG}" width="100" height="50" class="badge"><rect width="100" height="50"/></svg>'
        pages = {"https://x/a.svg": (markup, "image/svg+xml")}
        item = svg_item("https://x/a.svg", x=10, y=20, width=200, height=50)
        group = positioned_elements(compose([item], resolver_for(pages)))[0]
        self.assertEqual(group.get("transform"), "translate(10, 20) scale(2, 1)")
        self.assertEqual(group.get("class"), "badge")
        self.assertIsNone(group.get("width"))

    def test_fragment_namespaces_are_hoisted(self) -> None:
        first = f'<svg xmlns="{SVG}" xmlns:ink="urn:ink"><rect ink:label="a"/></svg>'
        second = f'<svg xmlns="{SVG}" xmlns:ink="urn:other"><rect ink:label="b"/></svg>'
        pages = {"https://x/a.svg": (first, "image/svg+xml"), "https://x/b.svg": (second, "image/svg+xml")}
        diagnostics = Diagnostics()
        document = compose([svg_item("https://x/a.svg"), svg_item("https://x/b.svg")], resolver_for(pages), diagnostics)
        self.assertEqual(document.root.get("xmlns:ink"), "urn:ink")
        self.assertEqual(len(diagnostics), 1)
        self.assertEqual(diagnostics.entries[0].item_index, 1)
        parse(serialize(document))

    def test_composition_is_deterministic(self) -> None:
        pages = {
            "https://x/a.svg": (GRADIENT_A, "image/svg+xml"),
            "https://x/b.svg": (GRADIENT_B, "image/svg+xml"),
        }
        items = [svg_item("https://x/a.svg", x=5), svg_item("https://x/b.svg", y=7, width=20)]
        first = serialize(compose(items, resolver_for(pages)))
        second = serialize(compose(items, resolver_for(pages)))
        self.assertEqual(first, second)

    def test_output_round_trips_through_parser(self) -> None:
        markup = (
            f'<svg xmlns="{SVG}" width="10" height="10"><style>.a &gt; b {{ fill: red }}</style>'
            '<text x="1">a &amp; b</text></svg>'
        )
        pages = {"https://x/a.svg": (markup, "image/svg+xml")}
        document = compose([svg_item("https://x/a.svg")], resolver_for(pages))
        reparsed = parse(serialize(document))
        group = positioned_elements(reparsed)[0]
        self.assertEqual(group.elements()[0].text(), ".a > b { fill: red }")
        self.assertEqual(group.elements()[1].text(), "a & b")

    def test_markup_content_is_accepted_from_any_resolver(self) -> None:
        resolver = mock.Mock()
        resolver.resolve.return_value = MarkupContent(GRADIENT_A, "stub")
        document = compose([svg_item("images/a.svg")], resolver)
        resolver.resolve.assert_called_once()
        self.assertEqual(len(positioned_elements(document)), 1)

    def test_deeply_nested_fragment_is_skipped(self) -> None:
        pages = {
            "https://x/deep.svg": (nested_groups(3000), "image/svg+xml"),
            "https://x/a.svg": (GRADIENT_A, "image/svg+xml"),
        }
        diagnostics = Diagnostics()
        document = compose([svg_item("https://x/deep.svg"), svg_item("https://x/a.svg")], resolver_for(pages), diagnostics)
        self.assertEqual([element.get("id") for element in positioned_elements(document)], ["item-1"])
        self.assertEqual(diagnostics.entries[0].item_index, 0)
        self.assertIn("nested deeper", diagnostics.entries[0].message)

    def test_fragment_at_depth_limit_is_placed(self) -> None:
        pages = {"https://x/deep.svg": (nested_groups(MAX_DEPTH), "image/svg+xml")}
        document = compose([svg_item("https://x/deep.svg")], resolver_for(pages))
        self.assertEqual(len(positioned_elements(document)), 1)
        parse(serialize(document))

    def test_unknown_charset_does_not_stop_the_run(self) -> None:
        pages = {
            "https://x/a.svg": (GRADIENT_A, "image/svg+xml; charset=x-bogus"),
            "https://x/b.svg": (GRADIENT_B, "image/svg+xml"),
        }
        document = compose([svg_item("https://x/a.svg"), svg_item("https://x/b.svg")], resolver_for(pages))
        self.assertEqual([element.get("id") for element in positioned_elements(document)], ["item-0", "item-1"])


if __name__ == "__main__":
    unittest.main()
